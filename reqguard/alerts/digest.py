"""
Alert Digest
============
Monitoring snapshot and the plain-text digest sent to alert channels.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List


@dataclass
class MonitoringSnapshot:
    """Latest monitoring findings for one environment."""
    environment: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    counts: Dict[str, int] = field(default_factory=dict)
    empty_states: List[str] = field(default_factory=list)
    missing_data: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def should_alert(snapshot: MonitoringSnapshot) -> bool:
    """Only errors and missing data page anyone; warnings ride along."""
    return bool(snapshot.errors or snapshot.missing_data)


def _section(title: str, items: List[str]) -> str:
    lines = "\n".join(f"• {item}" for item in items)
    return f"{title} ({len(items)}):\n{lines}"


def format_alert_digest(snapshot: MonitoringSnapshot) -> str:
    """
    Build the digest string for a snapshot.

    Sections appear in severity order (errors, missing data, warnings,
    empty states) and are omitted when empty; counts always close the
    digest.

    Args:
        snapshot: Monitoring findings

    Returns:
        Multi-line digest
    """
    sections = []
    if snapshot.errors:
        sections.append(_section("🚨 ERRORS", snapshot.errors))
    if snapshot.missing_data:
        sections.append(_section("⚠️ MISSING DATA", snapshot.missing_data))
    if snapshot.warnings:
        sections.append(_section("⚡ WARNINGS", snapshot.warnings))
    if snapshot.empty_states:
        sections.append(_section("📭 EMPTY STATES", snapshot.empty_states))

    counts = "\n".join(f"• {key}: {value}" for key, value in snapshot.counts.items())

    parts = [
        f"🔍 Monitoring Alert - {snapshot.environment.upper()}",
        f"⏰ {snapshot.timestamp.isoformat()}",
    ]
    if sections:
        parts.append("")
        parts.append("\n\n".join(sections))
    parts.append("")
    parts.append(f"📊 COUNTS:\n{counts}" if counts else "📊 COUNTS:")
    return "\n".join(parts).strip()
