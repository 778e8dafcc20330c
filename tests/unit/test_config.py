"""Unit tests for configuration loading and validation."""

import pytest

from captain.config import (
    CaptainConfig,
    clear_config_cache,
    get_config,
    load_config,
    parse_config,
)
from captain.errors import ConfigError


@pytest.fixture
def write_config(tmp_path):
    """Write a captain.yaml into the temp directory and return its path."""
    def _write(content: str):
        path = tmp_path / "captain.yaml"
        path.write_text(content)
        return str(path)
    return _write


class TestDefaults:
    """Defaults apply when sections are omitted."""

    def test_empty_mapping_uses_defaults(self):
        config = parse_config({})

        assert config.loop.max_gate_retries == 3
        assert config.loop.max_iterations == 50
        assert config.loop.human_timeout_seconds is None
        assert config.loop.max_cost_usd is None
        assert config.loop.max_runtime_seconds is None
        assert config.triage.confidence_threshold == 0.8
        assert config.verification.default_tier == 2
        assert config.hats.planner is None
        assert config.hats.timeout_seconds == 1800

    def test_paths_resolve_against_workspace(self, tmp_path):
        config = CaptainConfig(workspace_root=str(tmp_path))

        assert config.recovery_path == tmp_path / "RECOVERY_QUEUE.md"
        assert config.audit_path == tmp_path / "RequestLog.md"
        assert config.status_json_path == tmp_path / ".captain-status.json"
        assert config.status_markdown_path == tmp_path / ".captain-status.md"
        assert config.logs_path == tmp_path / ".captain" / "logs"
        assert config.checkpoints_path == tmp_path / ".captain" / "checkpoints.jsonl"

    def test_workspace_root_is_made_absolute(self):
        config = CaptainConfig(workspace_root=".")
        assert config.workspace_path.is_absolute()


class TestLoadConfig:
    """Loading captain.yaml from disk."""

    def test_loads_all_sections(self, write_config, tmp_path):
        path = write_config(
            f"""
workspace_root: {tmp_path}
objective: Ship the login flow
loop:
  max_gate_retries: 1
  max_iterations: 10
  human_timeout_seconds: 30
  max_cost_usd: 2.5
  max_runtime_seconds: 900
triage:
  confidence_threshold: 0.7
verification:
  default_tier: 1
  matrix_path: risk.yaml
safety:
  recovery_file: RECOVERY.md
artifacts:
  audit_file: audit.md
hats:
  planner: "agent --plan"
  executor: "agent --build"
  timeout_seconds: 60
"""
        )

        config = load_config(path)

        assert config.objective == "Ship the login flow"
        assert config.loop.max_gate_retries == 1
        assert config.loop.human_timeout_seconds == 30.0
        assert config.loop.max_cost_usd == 2.5
        assert config.loop.max_runtime_seconds == 900.0
        assert config.triage.confidence_threshold == 0.7
        assert config.verification.default_tier == 1
        assert config.verification.matrix_path == "risk.yaml"
        assert config.recovery_path == tmp_path / "RECOVERY.md"
        assert config.audit_path == tmp_path / "audit.md"
        assert config.hats.planner == "agent --plan"
        assert config.hats.executor == "agent --build"
        assert config.hats.verifier is None
        assert config.hats.timeout_seconds == 60

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml_raises(self, write_config):
        path = write_config("loop: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_raises(self, write_config):
        path = write_config("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)

    def test_empty_file_uses_defaults(self, write_config):
        config = load_config(write_config(""))
        assert config.loop.max_gate_retries == 3

    def test_env_vars_are_resolved(self, write_config, monkeypatch):
        monkeypatch.setenv("CAPTAIN_OBJECTIVE", "from env")
        config = load_config(write_config("objective: ${CAPTAIN_OBJECTIVE}\n"))
        assert config.objective == "from env"

    def test_missing_env_var_raises(self, write_config, monkeypatch):
        monkeypatch.delenv("CAPTAIN_UNSET_VAR", raising=False)
        with pytest.raises(ConfigError, match="CAPTAIN_UNSET_VAR"):
            load_config(write_config("objective: ${CAPTAIN_UNSET_VAR}\n"))


class TestValidation:
    """Out-of-range values are rejected."""

    @pytest.mark.parametrize(
        "data",
        [
            {"loop": {"max_gate_retries": -1}},
            {"loop": {"max_iterations": 0}},
            {"loop": {"recovery_poll_seconds": 0}},
            {"loop": {"human_timeout_seconds": 0}},
            {"loop": {"max_cost_usd": "lots"}},
            {"loop": {"max_runtime_seconds": -5}},
            {"triage": {"confidence_threshold": 1.5}},
            {"verification": {"default_tier": 4}},
            {"hats": {"timeout_seconds": 0}},
        ],
    )
    def test_rejects_invalid_values(self, data):
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_zero_gate_retries_is_allowed(self):
        assert parse_config({"loop": {"max_gate_retries": 0}}).loop.max_gate_retries == 0


class TestConfigCache:
    """get_config caches until cleared."""

    def test_cached_until_cleared(self, write_config):
        path = write_config("objective: first\n")
        first = get_config(path)
        assert get_config(path) is first

        clear_config_cache()
        assert get_config(path) is not first

    def test_force_reload(self, write_config, tmp_path):
        path = write_config("objective: first\n")
        get_config(path)
        (tmp_path / "captain.yaml").write_text("objective: second\n")

        assert get_config(path, force_reload=True).objective == "second"
