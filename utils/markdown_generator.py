"""Markdown run reports with YAML frontmatter."""

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from models.change import ChangeEvent
from models.constants import PROPERTY_TYPES
from models.result import ITEM_FAILED, ITEM_PARTIAL, RunAnalytics

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "active": "Active",
    "under_offer": "Under offer",
    "sold": "Sold",
    "archived": "Archived",
}


class MarkdownGenerator:
    """Generator for per-run summary files with YAML frontmatter."""

    def __init__(self, output_dir: str = "output/runs"):
        """
        Initialize the generator.

        Args:
            output_dir: Directory for run report files
        """
        self.output_dir = Path(output_dir)

    def generate_filename(self, analytics: RunAnalytics) -> str:
        """
        Generate a filename for the run.

        Format: run_YYYY-MM-DD-HHMMSS.md
        """
        return f"run_{analytics.started_at.strftime('%Y-%m-%d-%H%M%S')}.md"

    def generate_yaml_frontmatter(self, analytics: RunAnalytics) -> str:
        """Generate YAML frontmatter for the run."""
        frontmatter: Dict[str, Any] = analytics.to_dict()
        frontmatter["tags"] = ["listing-run", "skipped" if analytics.skipped else "completed"]

        return yaml.dump(
            frontmatter,
            allow_unicode=True,
            sort_keys=False,
            default_flow_style=False,
        )

    def generate_markdown_content(
        self, analytics: RunAnalytics, recent_changes: List[ChangeEvent]
    ) -> str:
        """Generate the markdown body content."""
        content = []

        content.append(f"# Listing run {analytics.started_at.strftime('%Y-%m-%d %H:%M')}\n")

        if analytics.skipped:
            content.append(f"Run skipped: {analytics.skip_reason}\n")
            return "\n".join(content)

        # Summary
        content.append("## Summary\n")
        content.append("| Metric | Value |")
        content.append("|---|---|")
        content.append(f"| Listings processed | {analytics.total_listings} |")
        content.append(f"| New | {analytics.new_listings} |")
        content.append(f"| Updated | {analytics.updated_listings} |")
        content.append(f"| Partial | {analytics.partial_listings} |")
        content.append(f"| Failed | {analytics.failed_listings} |")
        if analytics.average_price is not None:
            content.append(f"| Average price | ${analytics.average_price:,.0f} |")
        if analytics.average_days_on_market is not None:
            content.append(f"| Average days on market | {analytics.average_days_on_market:.1f} |")
        content.append("")

        # Status distribution
        content.append("## By status\n")
        for status, count in analytics.by_status.items():
            content.append(f"- {STATUS_LABELS.get(status, status)}: {count}")
        content.append("")

        # Listings
        listings = [r.listing for r in analytics.results if r.listing is not None]
        if listings:
            content.append("## Listings\n")
            content.append("| Id | Title | Type | Price | Status | Days |")
            content.append("|---|---|---|---|---|---|")
            for listing in listings:
                price = f"${listing.price:,}" if listing.price else "n/a"
                content.append(
                    f"| {listing.id} | {listing.title} | "
                    f"{PROPERTY_TYPES.get(listing.property_type, listing.property_type)} | "
                    f"{price} | {STATUS_LABELS.get(listing.status, listing.status)} | "
                    f"{listing.days_on_market} |"
                )
            content.append("")

        # Problems
        problems = [r for r in analytics.results if r.outcome in (ITEM_FAILED, ITEM_PARTIAL)]
        if problems:
            content.append("## Problems\n")
            for result in problems:
                listing_id = result.listing_id or (result.listing.id if result.listing else "?")
                detail = result.reason or "; ".join(result.warnings)
                content.append(f"- **{listing_id}** ({result.outcome}): {detail}")
            content.append("")

        # Changes
        if recent_changes:
            content.append("## Recent changes\n")
            for change in recent_changes:
                content.append(
                    f"- {change.change_date[:10]} **{change.listing_title}**: {change.description}"
                )
            content.append("")

        return "\n".join(content)

    def write_report(
        self, analytics: RunAnalytics, recent_changes: List[ChangeEvent]
    ) -> str:
        """
        Write the run report to disk.

        Returns:
            Path to the generated file
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / self.generate_filename(analytics)

        frontmatter = self.generate_yaml_frontmatter(analytics)
        body = self.generate_markdown_content(analytics, recent_changes)
        full_content = f"---\n{frontmatter}---\n\n{body}\n"

        # Write atomically (temp file + rename)
        temp_path = filepath.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(full_content)
        temp_path.replace(filepath)

        logger.info(f"Run report written: {filepath}")
        return str(filepath)
