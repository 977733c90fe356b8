"""Audit findings and the aggregated report."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Severity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


#: Points deducted from a perfect score of 100 per finding.
SEVERITY_PENALTY: dict[Severity, int] = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
    Severity.INFO: 0,
}


class AuditFinding(BaseModel):
    """A single security issue reported by one check."""

    check: str
    severity: Severity
    title: str
    description: str
    recommendation: str = ""
    references: list[str] = Field(default_factory=list)


def compute_score(findings: Iterable[AuditFinding]) -> int:
    """100 minus the per-severity penalties, floored at 0."""
    score = 100 - sum(SEVERITY_PENALTY[f.severity] for f in findings)
    return max(0, score)


class AuditReport(BaseModel):
    """Outcome of one audit run.

    Attributes:
        timestamp: When the run started (UTC)
        findings: Findings in check order
        summary: Finding count per severity; every severity is present
        score: 0-100, higher is better
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    findings: list[AuditFinding] = Field(default_factory=list)
    summary: dict[Severity, int] = Field(default_factory=dict)
    score: int = 100

    @classmethod
    def from_findings(
        cls, findings: list[AuditFinding], timestamp: datetime | None = None
    ) -> AuditReport:
        summary = {severity: 0 for severity in Severity}
        for finding in findings:
            summary[finding.severity] += 1
        return cls(
            timestamp=timestamp or datetime.now(UTC),
            findings=findings,
            summary=summary,
            score=compute_score(findings),
        )

    def by_check(self, check: str) -> list[AuditFinding]:
        return [f for f in self.findings if f.check == check]
