"""Severity ordering and threshold filtering.

Every severity comparison in the project goes through ``SEVERITY_ORDER``:
lower rank means more urgent.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence

from ai_review_agent.models.finding import Finding, Severity, SkillReport

SEVERITY_ORDER: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.INFO: 4,
}

THRESHOLD_OFF = "off"


def severity_rank(severity: Severity | str) -> int:
    """Rank of a severity; raises ValueError for unknown names."""
    return SEVERITY_ORDER[Severity(severity)]


def filter_findings_by_severity(
    findings: Sequence[Finding],
    threshold: Severity | str | None = None,
) -> list[Finding]:
    """Keep findings at or above the threshold.

    ``None`` keeps everything and ``"off"`` keeps nothing.
    """
    if threshold is None:
        return list(findings)
    if threshold == THRESHOLD_OFF:
        return []
    limit = severity_rank(threshold)
    return [f for f in findings if SEVERITY_ORDER[f.severity] <= limit]


def count_findings_at_or_above(report: SkillReport, threshold: Severity | str) -> int:
    """Number of report findings at or above the threshold."""
    return len(filter_findings_by_severity(report.findings, threshold))


def should_fail(report: SkillReport, threshold: Severity | str | None) -> bool:
    """True when a report breaches the fail-on threshold."""
    if threshold is None or threshold == THRESHOLD_OFF:
        return False
    return count_findings_at_or_above(report, threshold) > 0


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Most urgent first; ties keep their input order."""
    return sorted(findings, key=lambda f: SEVERITY_ORDER[f.severity])


def count_by_severity(findings: Iterable[Finding]) -> dict[Severity, int]:
    """Non-zero counts per severity, in severity order."""
    counts = Counter(f.severity for f in findings)
    return {sev: counts[sev] for sev in SEVERITY_ORDER if counts[sev]}
