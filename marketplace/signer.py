"""OAuth 1.0a PLAINTEXT request signing for the TradeMe API."""

import secrets
import time
from typing import Dict, Optional
from urllib.parse import quote

ROLE_REQUEST_TOKEN = "request_token"
ROLE_ACCESS_TOKEN = "access_token"
ROLE_API = "api"

SIGNING_ROLES = (ROLE_REQUEST_TOKEN, ROLE_ACCESS_TOKEN, ROLE_API)


def percent_encode(value: str) -> str:
    """RFC 3986 percent-encoding as OAuth 1.0a requires it."""
    return quote(str(value), safe="~")


def plaintext_signature(consumer_secret: str, token_secret: Optional[str] = None) -> str:
    """
    Build the PLAINTEXT signature: the encoded secret pair joined by "&".

    The token secret is empty until an access token has been issued.
    """
    return f"{percent_encode(consumer_secret)}&{percent_encode(token_secret or '')}"


def sign(
    role: str,
    consumer_key: str,
    consumer_secret: str,
    token: Optional[str] = None,
    token_secret: Optional[str] = None,
    callback_url: Optional[str] = None,
    verifier: Optional[str] = None,
) -> str:
    """
    Produce an ``Authorization`` header value for one request.

    Args:
        role: "request_token", "access_token" or "api"
        consumer_key: Application key
        consumer_secret: Application secret
        token: Request or access token (access_token role; api role when set)
        token_secret: Secret paired with ``token``
        callback_url: Callback for the request_token role
        verifier: Verifier returned to the callback (access_token role)

    Returns:
        Header value of the form ``OAuth k="v", ...``

    Raises:
        ValueError: If role is not one of the known signing roles
    """
    if role not in SIGNING_ROLES:
        raise ValueError(
            f"Unknown signing role: {role}. Supported roles: {', '.join(SIGNING_ROLES)}"
        )

    params: Dict[str, str] = {
        "oauth_consumer_key": consumer_key,
        "oauth_signature_method": "PLAINTEXT",
        "oauth_timestamp": str(int(time.time())),
        "oauth_nonce": secrets.token_hex(16),
        "oauth_version": "1.0",
    }

    if role == ROLE_REQUEST_TOKEN:
        params["oauth_callback"] = callback_url or "oob"
    elif role == ROLE_ACCESS_TOKEN:
        params["oauth_token"] = token or ""
        params["oauth_verifier"] = verifier or ""
    elif token:
        params["oauth_token"] = token

    params["oauth_signature"] = plaintext_signature(consumer_secret, token_secret)

    return "OAuth " + ", ".join(
        f'{key}="{percent_encode(value)}"' for key, value in params.items()
    )
