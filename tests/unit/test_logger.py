"""Unit tests for the JSONL logger and file system helpers."""

import json

import pytest

from captain.errors import FileSystemError
from captain.logger import CaptainLogger, LogLevel
from captain.utils.fs import append_line, ensure_dir, read_file, safe_write


class TestCaptainLogger:

    def test_writes_jsonl_entries(self, tmp_path):
        logger = CaptainLogger(tmp_path / "logs", session="run")
        logger.info("checkpoint_created", {"checkpoint_id": "abc"})
        logger.error("loop_halted", {"reason": "boom"})

        files = list((tmp_path / "logs").glob("run-*.jsonl"))
        assert len(files) == 1
        lines = [json.loads(line) for line in files[0].read_text().splitlines()]
        assert [entry["event_type"] for entry in lines] == ["checkpoint_created", "loop_halted"]
        assert lines[1]["level"] == LogLevel.ERROR
        assert lines[0]["session"] == "run"

    def test_task_context(self, tmp_path):
        logger = CaptainLogger(tmp_path)
        with logger.task_context("t1") as log:
            log.warn("gate_blocked")
        logger.info("outside")

        assert [e["event_type"] for e in logger.read_logs(task_id="t1")] == [
            "task_context_start", "gate_blocked", "task_context_end",
        ]
        assert "task_id" not in logger.read_logs(event_type="outside")[0]

    def test_read_logs_filters(self, tmp_path):
        logger = CaptainLogger(tmp_path)
        logger.debug("a")
        logger.warn("b")
        logger.warn("c")

        assert [e["event_type"] for e in logger.read_logs(level="warn")] == ["b", "c"]
        assert len(logger.read_logs(limit=2)) == 2
        assert logger.read_logs(date="1999-01-01") == []


class TestFileSystem:

    def test_safe_write_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b" / "status.json"
        safe_write(path, "{}")
        assert path.read_text() == "{}"
        assert [p.name for p in path.parent.iterdir()] == ["status.json"]

    def test_append_line_writes_header_once(self, tmp_path):
        path = tmp_path / "log.md"
        append_line(path, "one", header="# Header\n")
        append_line(path, "two\n", header="# Header\n")
        assert path.read_text() == "# Header\none\ntwo\n"

    def test_read_file_missing(self, tmp_path):
        assert read_file(tmp_path / "missing") == ""

    def test_ensure_dir_fails_on_file(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(FileSystemError):
            ensure_dir(blocker / "child")
