"""Tests for the bounded activity log."""

from clawdbot_node.activity import MAX_ENTRIES, ActivityLog, classify


class TestActivityLog:
    def test_classify(self):
        assert classify("camera.snap") == "camera"
        assert classify("screen.record") == "screen"
        assert classify("toaster.toast") == "other"

    def test_evicts_oldest(self):
        log = ActivityLog()
        for i in range(MAX_ENTRIES + 5):
            log.record(f"canvas.eval{i}", True)
        assert len(log) == MAX_ENTRIES
        assert log.entries[0].command == "canvas.eval5"

    def test_explicit_classification(self):
        entry = ActivityLog().record("camera.snap", False, "background")
        assert entry.classification == "background"
        assert entry.timestamp.tzinfo is not None

    def test_clear(self):
        log = ActivityLog(capacity=3)
        log.record("x", True)
        log.clear()
        assert log.entries == []
