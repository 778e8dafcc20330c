"""
Read-only health checks for Captain.

Implements 4 checks:
1. recovery - the recovery queue is clear (the loop is not halted)
2. git - the workspace is a git repository checkpoints can be taken in
3. config - the workspace exists and the risk matrix loads
4. disk - enough free space for checkpoints and logs

No check writes to the workspace, the state directory or git.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from captain.errors import ConfigError
from captain.safety.recovery import RecoveryQueue
from captain.verification import RiskMatrix

if TYPE_CHECKING:
    from captain.config import CaptainConfig


@dataclass
class HealthCheckResult:
    """Result of a single health check."""
    name: str
    passed: bool
    message: str
    details: Optional[dict] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HealthReport:
    """Complete health report from all checks."""
    healthy: bool
    checks: dict[str, HealthCheckResult]
    summary: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "checks": {k: v.to_dict() for k, v in self.checks.items()},
            "summary": self.summary,
            "timestamp": self.timestamp,
        }


class HealthChecker:
    """Run health checks against a Captain workspace."""

    def __init__(self, config: CaptainConfig, min_free_gb: float = 0.5) -> None:
        self.config = config
        self.min_free_gb = min_free_gb
        self._logger = logging.getLogger(__name__)
        self._checks: dict[str, Callable[[], HealthCheckResult]] = {
            "recovery": self._check_recovery,
            "git": self._check_git,
            "config": self._check_config,
            "disk": self._check_disk_space,
        }

    @property
    def check_names(self) -> list[str]:
        return list(self._checks)

    def _now_iso(self) -> str:
        """Get current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def run_health_checks(self, only: Optional[list[str]] = None) -> HealthReport:
        """
        Run health checks and return a report.

        Args:
            only: Names of the checks to run. None runs all of them.

        Raises:
            ValueError: If an unknown check name is requested.
        """
        names = only or self.check_names
        unknown = [name for name in names if name not in self._checks]
        if unknown:
            raise ValueError(
                f"Unknown health check(s): {', '.join(unknown)}. "
                f"Available: {', '.join(self.check_names)}"
            )

        checks = {name: self._checks[name]() for name in names}

        all_passed = all(check.passed for check in checks.values())
        failed_checks = [name for name, check in checks.items() if not check.passed]
        if all_passed:
            summary = "All health checks passed"
        else:
            summary = f"Failed checks: {', '.join(failed_checks)}"
            self._logger.warning("Health checks failed: %s", ", ".join(failed_checks))

        return HealthReport(
            healthy=all_passed,
            checks=checks,
            summary=summary,
            timestamp=self._now_iso(),
        )

    def _check_recovery(self) -> HealthCheckResult:
        """Check that no recovery record is blocking the loop."""
        queue = RecoveryQueue(self.config.recovery_path)
        if not queue.is_blocked():
            return HealthCheckResult(
                name="recovery",
                passed=True,
                message="Recovery queue is clear",
            )

        record = queue.read()
        details = record.to_dict() if record else None
        return HealthCheckResult(
            name="recovery",
            passed=False,
            message=(
                "HALTED (Recovery Required): "
                f"{record.failure_reason if record else 'recovery queue is not empty'}"
            ),
            details=details,
        )

    def _check_git(self) -> HealthCheckResult:
        """Check that the workspace is inside a git work tree."""
        try:
            result = subprocess.run(
                [self.config.safety.git_binary, "rev-parse", "--is-inside-work-tree"],
                cwd=self.config.workspace_path,
                capture_output=True,
                text=True,
                timeout=self.config.safety.git_timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return HealthCheckResult(
                name="git",
                passed=False,
                message=f"Could not run {self.config.safety.git_binary}: {e}",
            )

        if result.returncode != 0 or result.stdout.strip() != "true":
            return HealthCheckResult(
                name="git",
                passed=False,
                message="Workspace is not a git repository; checkpoints cannot be taken",
                details={"stderr": result.stderr.strip()},
            )

        return HealthCheckResult(
            name="git",
            passed=True,
            message="Workspace is a git repository",
        )

    def _check_config(self) -> HealthCheckResult:
        """Check the workspace and the risk matrix."""
        workspace = self.config.workspace_path
        if not workspace.is_dir():
            return HealthCheckResult(
                name="config",
                passed=False,
                message=f"Workspace not found: {workspace}",
            )

        matrix_path = self.config.verification.matrix_path
        try:
            if matrix_path:
                path = Path(matrix_path)
                if not path.is_absolute():
                    path = workspace / path
                RiskMatrix.from_yaml(path)
            else:
                RiskMatrix.default()
        except ConfigError as e:
            return HealthCheckResult(
                name="config",
                passed=False,
                message=f"Risk matrix is invalid: {e}",
            )

        return HealthCheckResult(
            name="config",
            passed=True,
            message="Configuration OK",
            details={"risk_matrix": matrix_path or "packaged default"},
        )

    def _check_disk_space(self) -> HealthCheckResult:
        """Check disk has sufficient free space."""
        try:
            stat = shutil.disk_usage(self.config.workspace_path)
            free_gb = stat.free / (1024 ** 3)

            if free_gb < self.min_free_gb:
                return HealthCheckResult(
                    name="disk",
                    passed=False,
                    message=(
                        f"Low disk space: {free_gb:.2f}GB free "
                        f"(minimum: {self.min_free_gb}GB)"
                    ),
                    details={
                        "free_gb": free_gb,
                        "total_gb": stat.total / (1024 ** 3),
                        "min_required_gb": self.min_free_gb,
                    },
                )

            return HealthCheckResult(
                name="disk",
                passed=True,
                message=f"Disk space OK: {free_gb:.2f}GB free",
                details={"free_gb": free_gb},
            )

        except OSError as e:
            return HealthCheckResult(
                name="disk",
                passed=False,
                message=f"Failed to check disk space: {e}",
            )
