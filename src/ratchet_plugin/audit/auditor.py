"""Runs the security checks and aggregates a report."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .checks import AuditCheck, AuditContext, default_checks
from .models import AuditFinding, AuditReport

logger = logging.getLogger(__name__)


class SecurityAuditor:
    """Runs every check against one AuditContext.

    Nothing is persisted; each call to :meth:`run_all` produces a fresh report.
    """

    def __init__(self, context: AuditContext, checks: tuple[AuditCheck, ...] | None = None) -> None:
        self.context = context
        self.checks = checks if checks is not None else default_checks()

    @property
    def check_names(self) -> list[str]:
        return [check.name for check in self.checks]

    async def run_check(self, name: str) -> list[AuditFinding]:
        """Run a single check by name.

        Raises:
            KeyError: If no check has this name
        """
        for check in self.checks:
            if check.name == name:
                return await check.run(self.context)
        raise KeyError(f"unknown audit check '{name}'")

    async def run_all(self) -> AuditReport:
        started = datetime.now(UTC)
        findings: list[AuditFinding] = []
        for check in self.checks:
            findings.extend(await check.run(self.context))

        report = AuditReport.from_findings(findings, timestamp=started)
        logger.info(
            f"Security audit finished: score {report.score}, {len(findings)} finding(s) "
            f"across {len(self.checks)} checks"
        )
        return report
