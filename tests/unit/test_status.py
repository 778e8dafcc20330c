"""Unit tests for the status artifacts."""

import json

from captain.status import StatusManager, StatusSnapshot


def _manager(tmp_path):
    return StatusManager(tmp_path / ".captain-status.json", tmp_path / ".captain-status.md")


class TestStatusSnapshot:

    def test_headline(self):
        assert StatusSnapshot(state="running").headline == "RUNNING"
        assert StatusSnapshot(state="awaiting_human").headline == "AWAITING HUMAN"
        assert StatusSnapshot(state="halted").headline == "HALTED (Recovery Required)"
        assert StatusSnapshot(state="idle", recovery_blocked=True).headline == (
            "HALTED (Recovery Required)"
        )

    def test_to_dict_shape(self):
        snapshot = StatusSnapshot(
            state="running",
            objective="Ship login",
            task_id="t1",
            task_title="add login",
            tier=2,
            iteration=3,
            total_iterations=7,
            cost_usd=0.25,
        )
        data = snapshot.to_dict()

        assert data["active_task"] == {"id": "t1", "title": "add login"}
        assert data["counters"]["iteration"] == 3
        assert data["counters"]["cost_usd"] == 0.25
        assert data["recovery"] == {"blocked": False, "reason": None}
        assert StatusSnapshot.from_dict(data).task_title == "add login"

    def test_markdown(self):
        markdown = StatusSnapshot(
            state="halted",
            recovery_blocked=True,
            recovery_reason="Checkpoint failed",
            last_checkpoint_id="abc123",
        ).to_markdown()

        assert markdown.startswith("# Captain Status")
        assert "**State:** HALTED (Recovery Required)" in markdown
        assert "- **Recovery Queue:** BLOCKED" in markdown
        assert "- **Recovery Reason:** Checkpoint failed" in markdown
        assert "`abc123`" in markdown


class TestStatusManager:

    def test_write_and_read(self, tmp_path):
        manager = _manager(tmp_path)
        manager.write(StatusSnapshot(state="idle", objective="Ship login"))

        assert json.loads(manager.json_path.read_text())["state"] == "idle"
        assert manager.markdown_path.read_text().startswith("# Captain Status")
        assert manager.read().objective == "Ship login"

    def test_read_missing_or_corrupt(self, tmp_path):
        manager = _manager(tmp_path)
        assert manager.read() is None
        manager.json_path.write_text("{not json")
        assert manager.read() is None
