"""Unit tests for the forensic request log."""

from captain.audit import AUDIT_HEADER, AuditLogger, describe
from captain.events.types import Event, Topic
from captain.models import RecoveryRecord


class TestAuditLogger:

    def test_creates_file_with_header(self, tmp_path):
        path = tmp_path / "RequestLog.md"
        AuditLogger(path).log_event("TASK_START", "corr-1", "task=t1", timestamp="2026-01-01T00:00:00")

        content = path.read_text()
        assert content.startswith(AUDIT_HEADER)
        assert content.endswith("| 2026-01-01T00:00:00 | TASK_START | corr-1 | task=t1 |\n")

    def test_append_only(self, tmp_path):
        path = tmp_path / "RequestLog.md"
        audit = AuditLogger(path)
        audit.log_event("A", details="first")
        before = path.read_text()
        audit.log_event("B", details="second")

        assert path.read_text().startswith(before)
        assert [e["event_type"] for e in audit.entries()] == ["A", "B"]

    def test_cells_are_escaped(self, tmp_path):
        audit = AuditLogger(tmp_path / "RequestLog.md")
        audit.log_event("HUMAN_DIRECTIVE_INJECTED", details="line one\nuses a | pipe")

        entry = audit.entries()[0]
        assert entry["details"] == "line one uses a | pipe"
        assert entry["correlation_id"] == "-"

    def test_records_bus_events(self, tmp_path, bus):
        audit = AuditLogger(tmp_path / "RequestLog.md")
        audit.attach(bus)

        bus.publish(
            Topic.TRIAGE_DECISION,
            {"task_id": "t1", "mode": "Full", "confidence": 0.6, "reason": "unclear", "forced": True},
            correlation_id="corr-7",
        )
        bus.publish(Topic.LOOP_RESUMED, {"reason": "Recovery record cleared"})
        bus.flush(timeout=2.0)

        entries = audit.entries()
        assert [e["event_type"] for e in entries] == ["TRIAGE_DECISION", "LOOP_RESUMED"]
        assert entries[0]["correlation_id"] == "corr-7"
        assert "mode=Full (forced)" in entries[0]["details"]

    def test_log_halt(self, tmp_path):
        audit = AuditLogger(tmp_path / "RequestLog.md")
        record = RecoveryRecord(
            task_id="t1",
            title="add login",
            failure_reason="Checkpoint failed",
            last_checkpoint_id=None,
            rollback_instruction="",
        )
        audit.log_halt(record, "corr-1")

        entry = audit.entries()[0]
        assert entry["event_type"] == "RECOVERY_RECORDED"
        assert "checkpoint=unknown" in entry["details"]

    def test_entries_on_missing_file(self, tmp_path):
        assert AuditLogger(tmp_path / "missing.md").entries() == []


class TestDescribe:

    def test_build_blocked(self):
        event = Event(
            topic=Topic.BUILD_BLOCKED,
            payload={
                "task_id": "t1", "attempt": 2, "retries": 2, "max_retries": 3,
                "reasons": ["coverage 82%, required 95%", "required check 'security' failed"],
            },
        )
        assert describe(event) == (
            "task=t1 attempt=2 retries=2/3 "
            "reasons=coverage 82%, required 95%; required check 'security' failed"
        )

    def test_human_interact_lists_labels(self):
        event = Event(
            topic=Topic.HUMAN_INTERACT,
            payload={
                "request_id": "r1",
                "question": "Which?",
                "options": [{"label": "A"}, {"label": "B"}],
            },
        )
        assert describe(event) == "request=r1 question=Which? options=A,B"

    def test_generic_payload_skips_empty_values(self):
        event = Event(topic=Topic.TASK_COMPLETE, payload={"task_id": "t1", "checkpoint_id": None})
        assert describe(event) == "task_id=t1"
