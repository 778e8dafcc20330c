"""
Configuration loading and validation for Captain.

This module handles:
- Loading captain.yaml from the workspace root
- Environment variable resolution (${VAR} syntax)
- Validation of numeric bounds
- Default values for optional fields
- Caching of the loaded configuration
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from captain.errors import ConfigError

DEFAULT_CONFIG_FILE = "captain.yaml"


@dataclass
class LoopConfig:
    """Orchestration loop limits."""
    max_gate_retries: int = 3                  # Blocked attempts before escalating to a human
    max_iterations: int = 50                   # Steps per task before it is declared unrecoverable
    recovery_poll_seconds: float = 2.0         # Poll interval for recovery queue clearance
    human_timeout_seconds: Optional[float] = None  # None blocks indefinitely
    max_cost_usd: Optional[float] = None       # Cumulative cost ceiling per run
    max_runtime_seconds: Optional[float] = None  # Per task, human waits excluded


@dataclass
class TriageConfig:
    """Routing engine policy."""
    confidence_threshold: float = 0.8          # Below this, the Full path is forced


@dataclass
class VerificationConfig:
    """Risk matrix location and fallbacks."""
    matrix_path: Optional[str] = None          # None uses the packaged default matrix
    default_tier: int = 2                      # Tier for scopes the matrix does not know


@dataclass
class SafetyConfig:
    """Checkpoint and recovery queue settings."""
    recovery_file: str = "RECOVERY_QUEUE.md"
    checkpoint_message: str = "captain: checkpoint {task_id}"
    git_binary: str = "git"
    git_timeout_seconds: int = 60


@dataclass
class ArtifactsConfig:
    """Human- and machine-readable artifacts written into the workspace."""
    audit_file: str = "RequestLog.md"
    status_json: str = ".captain-status.json"
    status_markdown: str = ".captain-status.md"


@dataclass
class HatsConfig:
    """Commands that play each hat during `captain run`."""
    planner: Optional[str] = None              # Receives the step prompt on stdin
    executor: Optional[str] = None
    verifier: Optional[str] = None             # Optional; executor evidence is used without it
    timeout_seconds: int = 1800


@dataclass
class CaptainConfig:
    """
    Main configuration for Captain.

    This is the top-level config loaded from captain.yaml.
    """
    workspace_root: str = "."
    state_dir: str = ".captain"
    objective: str = ""

    loop: LoopConfig = field(default_factory=LoopConfig)
    triage: TriageConfig = field(default_factory=TriageConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    artifacts: ArtifactsConfig = field(default_factory=ArtifactsConfig)
    hats: HatsConfig = field(default_factory=HatsConfig)

    def __post_init__(self) -> None:
        """Convert the workspace root to an absolute path."""
        self.workspace_root = str(Path(self.workspace_root).absolute())

    @property
    def workspace_path(self) -> Path:
        """Absolute path to the workspace."""
        return Path(self.workspace_root)

    @property
    def state_path(self) -> Path:
        """Absolute path to the .captain state directory."""
        return self.workspace_path / self.state_dir

    @property
    def logs_path(self) -> Path:
        """Absolute path to the JSONL run logs."""
        return self.state_path / "logs"

    @property
    def checkpoints_path(self) -> Path:
        """Absolute path to the append-only checkpoint history."""
        return self.state_path / "checkpoints.jsonl"

    @property
    def recovery_path(self) -> Path:
        """Absolute path to the recovery queue document."""
        return self.workspace_path / self.safety.recovery_file

    @property
    def audit_path(self) -> Path:
        """Absolute path to the forensic request log."""
        return self.workspace_path / self.artifacts.audit_file

    @property
    def status_json_path(self) -> Path:
        return self.workspace_path / self.artifacts.status_json

    @property
    def status_markdown_path(self) -> Path:
        return self.workspace_path / self.artifacts.status_markdown


# Module-level cache for the loaded configuration
_config_cache: Optional[CaptainConfig] = None


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number or null, got {value!r}")


def _parse_loop_config(data: dict[str, Any]) -> LoopConfig:
    """Parse loop configuration from dict."""
    config = LoopConfig(
        max_gate_retries=int(data.get("max_gate_retries", 3)),
        max_iterations=int(data.get("max_iterations", 50)),
        recovery_poll_seconds=float(data.get("recovery_poll_seconds", 2.0)),
        human_timeout_seconds=_optional_float(
            data.get("human_timeout_seconds"), "loop.human_timeout_seconds"
        ),
        max_cost_usd=_optional_float(data.get("max_cost_usd"), "loop.max_cost_usd"),
        max_runtime_seconds=_optional_float(
            data.get("max_runtime_seconds"), "loop.max_runtime_seconds"
        ),
    )
    if config.max_gate_retries < 0:
        raise ConfigError("loop.max_gate_retries must be >= 0")
    if config.max_iterations < 1:
        raise ConfigError("loop.max_iterations must be >= 1")
    if config.recovery_poll_seconds <= 0:
        raise ConfigError("loop.recovery_poll_seconds must be > 0")
    if config.human_timeout_seconds is not None and config.human_timeout_seconds <= 0:
        raise ConfigError("loop.human_timeout_seconds must be > 0 when set")
    if config.max_runtime_seconds is not None and config.max_runtime_seconds <= 0:
        raise ConfigError("loop.max_runtime_seconds must be > 0 when set")
    return config


def _parse_triage_config(data: dict[str, Any]) -> TriageConfig:
    """Parse triage configuration from dict."""
    threshold = float(data.get("confidence_threshold", 0.8))
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError("triage.confidence_threshold must be within [0, 1]")
    return TriageConfig(confidence_threshold=threshold)


def _parse_verification_config(data: dict[str, Any]) -> VerificationConfig:
    """Parse verification configuration from dict."""
    default_tier = int(data.get("default_tier", 2))
    if default_tier not in (1, 2, 3):
        raise ConfigError("verification.default_tier must be 1, 2 or 3")
    return VerificationConfig(
        matrix_path=data.get("matrix_path"),
        default_tier=default_tier,
    )


def _parse_safety_config(data: dict[str, Any]) -> SafetyConfig:
    """Parse safety configuration from dict."""
    return SafetyConfig(
        recovery_file=data.get("recovery_file", "RECOVERY_QUEUE.md"),
        checkpoint_message=data.get("checkpoint_message", "captain: checkpoint {task_id}"),
        git_binary=data.get("git_binary", "git"),
        git_timeout_seconds=int(data.get("git_timeout_seconds", 60)),
    )


def _parse_artifacts_config(data: dict[str, Any]) -> ArtifactsConfig:
    """Parse artifact path configuration from dict."""
    return ArtifactsConfig(
        audit_file=data.get("audit_file", "RequestLog.md"),
        status_json=data.get("status_json", ".captain-status.json"),
        status_markdown=data.get("status_markdown", ".captain-status.md"),
    )


def _parse_hats_config(data: dict[str, Any]) -> HatsConfig:
    """Parse hat command configuration from dict."""
    config = HatsConfig(
        planner=data.get("planner"),
        executor=data.get("executor"),
        verifier=data.get("verifier"),
        timeout_seconds=int(data.get("timeout_seconds", 1800)),
    )
    if config.timeout_seconds <= 0:
        raise ConfigError("hats.timeout_seconds must be > 0")
    return config


def parse_config(data: dict[str, Any]) -> CaptainConfig:
    """
    Build a CaptainConfig from an already-loaded mapping.

    Raises:
        ConfigError: If a value is out of range or an env var is missing.
    """
    data = _resolve_env_vars(data)

    return CaptainConfig(
        workspace_root=data.get("workspace_root", "."),
        state_dir=data.get("state_dir", ".captain"),
        objective=data.get("objective", ""),
        loop=_parse_loop_config(data.get("loop") or {}),
        triage=_parse_triage_config(data.get("triage") or {}),
        verification=_parse_verification_config(data.get("verification") or {}),
        safety=_parse_safety_config(data.get("safety") or {}),
        artifacts=_parse_artifacts_config(data.get("artifacts") or {}),
        hats=_parse_hats_config(data.get("hats") or {}),
    )


def load_config(config_path: Optional[str] = None) -> CaptainConfig:
    """
    Load configuration from captain.yaml.

    Args:
        config_path: Optional path to config file. If not provided,
                     looks for captain.yaml in current directory.

    Returns:
        CaptainConfig: Loaded and validated configuration.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return parse_config(raw_data)


def get_config(config_path: Optional[str] = None, force_reload: bool = False) -> CaptainConfig:
    """
    Get the cached configuration, loading it if necessary.

    Raises:
        ConfigError: If config is invalid or cannot be loaded.
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path)

    return _config_cache


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    global _config_cache
    _config_cache = None
