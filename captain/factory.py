"""
Wiring for a complete Captain orchestrator.

build_orchestrator() creates one event bus, logger, gate, safety
middleware, human bridge, status and audit writers from a config and
hands them to a new Orchestrator. Everything it builds is scoped to that
orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from captain.audit import AuditLogger
from captain.config import CaptainConfig
from captain.events.bus import EventBus
from captain.hats import Hat, HatRegistry
from captain.human import HumanBridge
from captain.logger import CaptainLogger
from captain.loop import Orchestrator
from captain.safety import (
    CheckpointLog,
    GitSnapshotter,
    RecoveryQueue,
    SafetyMiddleware,
    Snapshotter,
)
from captain.status import StatusManager
from captain.triage import Classifier, TriageEngine
from captain.verification import RiskMatrix, VerificationGate


def load_risk_matrix(config: CaptainConfig) -> RiskMatrix:
    """
    Load the configured risk matrix, or the packaged default.

    Raises:
        ConfigError: If the configured matrix is missing or invalid.
    """
    if not config.verification.matrix_path:
        return RiskMatrix.default()
    path = Path(config.verification.matrix_path)
    if not path.is_absolute():
        path = config.workspace_path / path
    return RiskMatrix.from_yaml(path)


def default_snapshotter(config: CaptainConfig) -> GitSnapshotter:
    """Git checkpoints that ignore Captain's own artifacts."""
    return GitSnapshotter(
        repo_root=config.workspace_path,
        git_binary=config.safety.git_binary,
        timeout_seconds=config.safety.git_timeout_seconds,
        exclude=[
            config.state_dir,
            config.safety.recovery_file,
            config.artifacts.audit_file,
            config.artifacts.status_json,
            config.artifacts.status_markdown,
        ],
    )


def build_orchestrator(
    config: CaptainConfig,
    hats: list[Hat],
    snapshotter: Optional[Snapshotter] = None,
    classifier: Optional[Classifier] = None,
    bus: Optional[EventBus] = None,
    logger: Optional[CaptainLogger] = None,
) -> Orchestrator:
    """
    Build an orchestrator for a workspace.

    Args:
        config: Loaded configuration.
        hats: Hats to register; planner and executor are required.
        snapshotter: Checkpoint backend. Defaults to git in the workspace.
        classifier: Raw triage classifier. Defaults to the keyword heuristic.
        bus: Event bus. A new one is created if not given.
        logger: JSONL logger. Defaults to <state_dir>/logs.

    Raises:
        ConfigError: If the risk matrix cannot be loaded.
        ValueError: If a required hat is missing.
    """
    bus = bus or EventBus()
    logger = logger or CaptainLogger(config.logs_path)

    triage = TriageEngine(
        classifier=classifier,
        confidence_threshold=config.triage.confidence_threshold,
        logger=logger,
    )
    gate = VerificationGate(
        matrix=load_risk_matrix(config),
        default_tier=config.verification.default_tier,
        logger=logger,
    )
    safety = SafetyMiddleware(
        snapshotter=snapshotter or default_snapshotter(config),
        checkpoint_log=CheckpointLog(config.checkpoints_path),
        recovery_queue=RecoveryQueue(config.recovery_path),
        message_template=config.safety.checkpoint_message,
        logger=logger,
    )
    bridge = HumanBridge(
        bus=bus,
        timeout_seconds=config.loop.human_timeout_seconds,
        logger=logger,
    )
    audit = AuditLogger(config.audit_path)
    audit.attach(bus)

    return Orchestrator(
        config=config,
        bus=bus,
        hats=HatRegistry(hats),
        gate=gate,
        safety=safety,
        bridge=bridge,
        triage=triage,
        status=StatusManager(config.status_json_path, config.status_markdown_path),
        audit=audit,
        logger=logger,
    )
