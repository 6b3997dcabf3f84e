import io
import json
from pathlib import Path

from rich.console import Console

from appsync.cli.progress_manager import ProgressManager
from appsync.models.events import EventKind, TransferEvent
from appsync.models.stats import SyncStats
from appsync.utils.structured_logger import StructuredLogger, create_structured_logger


def _records(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_transfer_events_are_written_as_json_lines(tmp_path: Path):
    base, transfer, session = create_structured_logger(tmp_path, enable_json=True)
    with base:
        session.session_started("file:///app.xml", tmp_path / "app", 2)
        transfer(TransferEvent(EventKind.FILE_STARTED, source="a", destination="b", sequence=1, total=3))
        transfer(TransferEvent(EventKind.FILE_PROGRESS, source="a", completed=1, total=3))
        transfer(TransferEvent(EventKind.INTEGRITY_MISMATCH, source="a", message="differs"))
        session.session_completed("completed", 1.234, SyncStats(files_copied=1))

    records = _records(base.json_log_path)
    assert [r["event"] for r in records] == [
        "session_started",
        "file_started",
        "integrity_mismatch",
        "session_completed",
    ]
    assert records[2]["level"] == "WARNING"
    assert records[2]["message"] == "differs"
    assert records[3]["files_copied"] == 1
    assert records[3]["duration_s"] == 1.23
    assert len({r["session_id"] for r in records}) == 1


def test_json_disabled_without_directory():
    logger = StructuredLogger("appsync.test", log_dir=None, enable_json=True)
    assert logger.json_log_path is None
    logger.info("nothing_written", key="value")
    logger.close()


def test_progress_manager_counts_events():
    manager = ProgressManager(Console(file=io.StringIO()), quiet=True)
    manager.initialize_session()
    events = [
        TransferEvent(EventKind.PHASE_STARTED, total=3, rollout_order=0),
        TransferEvent(EventKind.FILE_STARTED, destination="/x/a", sequence=1, total=10, rollout_order=0),
        TransferEvent(EventKind.FILE_STARTED, destination="/x/b", sequence=2, total=10, rollout_order=0),
        TransferEvent(EventKind.FILE_COPIED, destination="/x/a", sequence=1, rollout_order=0),
        TransferEvent(EventKind.FILE_COPIED, destination="/x/b", sequence=2, rollout_order=0),
        TransferEvent(EventKind.FILE_DELETED, destination="/x/c", sequence=3, rollout_order=0),
    ]
    for event in events:
        manager(event)

    stats = manager.get_statistics()
    assert stats["total_operations"] == 3
    assert stats["finished_operations"] == 3
    assert stats["copied"] == 2
    assert stats["deleted"] == 1
    assert stats["peak_concurrent"] == 2
    assert stats["active_transfers"] == 0
