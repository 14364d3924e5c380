"""Tests for OAuth PLAINTEXT request signing."""

import sys
from pathlib import Path

# Add parent directory to path to import project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import re

import pytest

from marketplace.signer import plaintext_signature, sign


def parse_header(header: str) -> dict:
    """Split an OAuth header into its key/value pairs (values still encoded)."""
    assert header.startswith("OAuth ")
    return dict(re.findall(r'(\w+)="([^"]*)"', header))


class TestSign:
    """Test header construction per signing role."""

    def test_api_role_header(self):
        """API requests carry key, token, method and the encoded secret pair."""
        header = sign("api", "K", "S", token="T")

        assert 'oauth_consumer_key="K"' in header
        assert 'oauth_token="T"' in header
        assert 'oauth_signature_method="PLAINTEXT"' in header
        assert 'oauth_signature="S%26"' in header

    def test_token_secret_included_in_signature(self):
        header = sign("api", "K", "S", token="T", token_secret="TS")
        params = parse_header(header)

        assert params["oauth_signature"] == "S%26TS"

    def test_secrets_are_encoded_twice(self):
        """Reserved characters are encoded in the signature and again in the header."""
        header = sign("api", "K", "a&b", token="T", token_secret="c d")
        params = parse_header(header)

        assert plaintext_signature("a&b", "c d") == "a%26b&c%20d"
        assert params["oauth_signature"] == "a%2526b%26c%2520d"

    def test_request_token_role_adds_callback(self):
        header = sign("request_token", "K", "S", callback_url="https://example.com/cb")
        params = parse_header(header)

        assert params["oauth_callback"] == "https%3A%2F%2Fexample.com%2Fcb"
        assert "oauth_token" not in params
        assert params["oauth_signature"] == "S%26"

    def test_access_token_role_adds_token_and_verifier(self):
        header = sign("access_token", "K", "S", token="RT", token_secret="RS", verifier="V")
        params = parse_header(header)

        assert params["oauth_token"] == "RT"
        assert params["oauth_verifier"] == "V"
        assert params["oauth_signature"] == "S%26RS"

    def test_api_role_without_token_omits_token(self):
        params = parse_header(sign("api", "K", "S"))

        assert "oauth_token" not in params
        assert params["oauth_signature"] == "S%26"

    def test_fresh_nonce_per_call(self):
        first = parse_header(sign("api", "K", "S", token="T"))
        second = parse_header(sign("api", "K", "S", token="T"))

        assert first["oauth_nonce"] != second["oauth_nonce"]
        assert first["oauth_timestamp"].isdigit()
        assert first["oauth_version"] == "1.0"

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError, match="Unknown signing role"):
            sign("refresh", "K", "S")
