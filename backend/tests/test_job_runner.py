from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from catalog.core.exceptions import (
    JobNotFoundError,
    SourceNotFoundError,
    ValidationError,
)
from catalog.db.models.import_source import ImportSource
from catalog.db.models.job import Job
from catalog.services import batch_operations, job_service
from catalog.services.job_runner import ItemOutcome, JobRunner, describe_item
from catalog.services.versioning import ActorContext, VersionChainManager


class ProgressRecorder:
    """Progress callback that checks the Job row every time it is called."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.snapshots: list[dict] = []

    def __call__(self, job_id, progress, message=None, *, status=None, meta=None):
        observer = self.session_factory()
        try:
            job = observer.get(Job, job_id)
            self.snapshots.append(
                {
                    "status": job.status,
                    "total": job.total_items,
                    "processed": job.processed_items,
                    "successful": job.successful_items,
                    "failed": job.failed_items,
                    "progress": progress,
                }
            )
        finally:
            observer.close()


def _import_rows(count: int, bad: set[int] = frozenset()) -> list[dict]:
    rows = []
    for i in range(count):
        row = {"entity_code": f"P{i:04d}", "name": f"Product number {i}", "price": 10.0 + i}
        if i in bad:
            row["price"] = -1  # rejected by patch validation
        rows.append(row)
    return rows


def test_batch_with_failing_items_completes(db, session_factory, make_source):
    make_source("feed-a")
    bad = {3, 57, 101, 150, 249}
    recorder = ProgressRecorder(session_factory)
    runner = JobRunner(db, chunk_size=100, progress=recorder)

    job = runner.run(
        "import_products",
        _import_rows(250, bad),
        batch_operations.import_product_op("feed-a", notifier=None),
        params={"source_id": "feed-a"},
    )

    assert job.status == "completed"
    assert job.total_items == 250
    assert job.processed_items == 250
    assert job.successful_items == 245
    assert job.failed_items == 5
    assert sorted(e["index"] for e in job.errors) == sorted(bad)
    assert {e["item"] for e in job.errors} == {f"P{i:04d}" for i in bad}
    assert all("price cannot be negative" in e["error"] for e in job.errors)
    assert job.started_at is not None and job.completed_at is not None
    assert job.duration_seconds is not None

    # start, one per chunk (3), completion
    assert len(recorder.snapshots) == 5
    previous = 0
    for snap in recorder.snapshots:
        assert snap["processed"] == snap["successful"] + snap["failed"]
        assert snap["processed"] <= snap["total"]
        assert snap["processed"] >= previous
        previous = snap["processed"]
    assert [s["processed"] for s in recorder.snapshots] == [0, 100, 200, 250, 250]
    assert recorder.snapshots[-1]["status"] == "completed"


def test_errors_are_capped_but_still_counted(db):
    def always_fails(session, item, index):
        raise ValidationError(f"bad item {index}")

    job = JobRunner(db, chunk_size=10, error_cap=3, progress=mock.Mock()).run(
        "bulk_publish", [f"E{i}" for i in range(25)], always_fails
    )

    assert job.status == "completed"
    assert job.failed_items == 25
    assert job.successful_items == 0
    assert len(job.errors) == 3
    assert job.errors[0] == {"item": "E0", "error": "bad item 0", "index": 0}


def test_unexpected_exception_fails_the_job(db):
    progress = mock.Mock()

    def op(session, item, index):
        if index == 12:
            raise OperationalError("SELECT 1", {}, Exception("connection lost"))
        return ItemOutcome()

    runner = JobRunner(db, chunk_size=5, progress=progress)
    with pytest.raises(OperationalError):
        runner.run("bulk_publish", [f"E{i}" for i in range(20)], op)

    job = db.query(Job).one()
    assert job.status == "failed"
    assert job.processed_items == 12
    assert job.successful_items == 12
    assert job.failed_items == 0
    assert job.errors[-1]["item"] == "system"
    assert "connection lost" in job.errors[-1]["error"]
    assert "connection lost" in job.error_message
    assert progress.call_args.kwargs["status"] == "failed"


def test_cancelled_job_stops_at_chunk_boundary(db, session_factory):
    seen: list[int] = []

    def op(session, item, index):
        seen.append(index)
        if index == 4:
            other = session_factory()
            try:
                job_service.cancel_job(other, other.query(Job).one().id)
            finally:
                other.close()
        return ItemOutcome()

    job = JobRunner(db, chunk_size=5, progress=mock.Mock()).run(
        "bulk_publish", [f"E{i}" for i in range(20)], op
    )

    assert seen == [0, 1, 2, 3, 4]
    assert job.status == "cancelled"
    assert job.processed_items == 5
    assert job.completed_at is not None


def test_cancel_during_last_chunk_is_not_overwritten(db, session_factory):
    def op(session, item, index):
        if index == 6:
            other = session_factory()
            try:
                job_service.cancel_job(other, other.query(Job).one().id)
            finally:
                other.close()
        return ItemOutcome()

    job = JobRunner(db, chunk_size=5, progress=mock.Mock()).run(
        "bulk_publish", [f"E{i}" for i in range(8)], op
    )

    assert job.status == "cancelled"
    assert job.processed_items == 8
    assert job.completed_at is not None
    db.expire_all()
    assert db.get(Job, job.id).status == "cancelled"


def test_pending_cancelled_job_is_not_run(db):
    job_id = job_service.submit_job(
        db, "bulk_publish", ["E1"], {"min_score": 0}, dispatch=lambda job_id: None
    )["job_id"]
    job_service.cancel_job(db, job_id)

    job = job_service.process_job(db, job_id, progress=mock.Mock())

    assert job.status == "cancelled"
    assert job.processed_items == 0
    with pytest.raises(ValidationError):
        job_service.cancel_job(db, job_id)


def test_describe_item():
    assert describe_item("  E1 ", 0) == "E1"
    assert describe_item({"sku": "S-1"}, 0) == "S-1"
    assert describe_item({"entity_code": "E2", "sku": "S-2"}, 0) == "E2"
    assert describe_item({"name": "x"}, 4) == "item 5"


def test_submit_job_validates_and_dispatches(db, make_source):
    make_source("feed-a")
    dispatched: list[str] = []

    accepted = job_service.submit_job(
        db,
        "import_products",
        [{"sku": "A"}, {"sku": "B"}],
        {"source_id": "feed-a"},
        dispatch=dispatched.append,
    )

    assert accepted["total_items"] == 2
    assert dispatched == [accepted["job_id"]]
    job = job_service.get_job(db, accepted["job_id"])
    assert job.status == "pending"
    assert job.params == {"source_id": "feed-a"}

    noop = lambda job_id: None  # noqa: E731
    with pytest.raises(ValidationError):
        job_service.submit_job(db, "rebuild_index", ["E1"], dispatch=noop)
    with pytest.raises(ValidationError):
        job_service.submit_job(db, "bulk_publish", [], dispatch=noop)
    with pytest.raises(SourceNotFoundError):
        job_service.submit_job(db, "import_products", [{}], {"source_id": "nope"}, dispatch=noop)
    with pytest.raises(ValidationError):
        job_service.submit_job(
            db, "associate_products", ["E1"], {"action": "toggle", "field": "tags", "value": "x"},
            dispatch=noop,
        )
    with pytest.raises(JobNotFoundError):
        job_service.get_job(db, "missing")


def test_submit_rejects_oversized_batches(db, monkeypatch):
    monkeypatch.setattr(
        job_service, "get_settings", lambda: mock.Mock(max_batch_size=3)
    )
    with pytest.raises(ValidationError, match="Batch too large"):
        job_service.submit_job(db, "bulk_publish", ["a", "b", "c", "d"], dispatch=lambda _: None)


def test_failed_dispatch_marks_job_failed(db):
    def broken(job_id):
        raise ConnectionError("broker down")

    with pytest.raises(ConnectionError):
        job_service.submit_job(db, "bulk_publish", ["E1"], dispatch=broken)

    job = db.query(Job).one()
    assert job.status == "failed"
    assert "broker down" in job.error_message


def test_import_job_applies_mappings_and_updates_source_stats(db, make_source):
    make_source(
        "feed-a",
        auto_publish_enabled=True,
        min_score_threshold=0,
        field_mappings={"codice": "entity_code", "nome": "name", "prezzo": "price"},
    )
    rows = [
        {"codice": "E1", "nome": "Kettle", "prezzo": 10.0, "images": ["a.jpg"]},
        {"codice": "E2", "nome": "Toaster", "prezzo": 20.0},
        {"nome": "No identity"},
    ]
    job_id = job_service.submit_job(
        db, "import_products", rows, {"source_id": "feed-a"}, dispatch=lambda _: None
    )["job_id"]

    job = job_service.process_job(db, job_id, progress=mock.Mock())

    assert (job.successful_items, job.failed_items, job.auto_published_items) == (2, 1, 1)
    assert job.errors[0]["error"] == "Missing entity_code or sku"
    manager = VersionChainManager(db)
    assert manager.get_current("E1").data["name"] == "Kettle"
    assert manager.get_current("E1").status == "published"
    assert manager.get_current("E2").status == "draft"

    stats = db.get(ImportSource, "feed-a").stats
    assert stats["total_imports"] == 1
    assert stats["total_products"] == 2
    assert stats["last_import_status"] == "partial"


def test_import_accepts_numeric_identifiers(db, make_source):
    make_source("feed-a")
    rows = [
        {"sku": 12345, "name": "Numeric sku product", "price": 5.0},
        {"entity_code": "E7", "sku": 987, "name": "Coded product"},
        {"entity_code": "E8", "sku": True, "name": "Boolean sku"},
    ]

    job = JobRunner(db, progress=mock.Mock()).run(
        "import_products", rows, batch_operations.import_product_op("feed-a", notifier=None)
    )

    assert (job.successful_items, job.failed_items) == (2, 1)
    assert job.errors[0]["item"] == "E8"
    manager = VersionChainManager(db)
    assert manager.get_current("12345").sku == "12345"
    assert manager.get_current("E7").sku == "987"


def test_association_job_adds_and_removes_tags(db, make_source):
    make_source("feed-a")
    manager = VersionChainManager(db)
    manager.commit("E1", {"name": "Kettle", "tags": [{"tag_id": "t1", "name": "Sale"}]}, ActorContext(source_id="feed-a"))
    manager.commit("E2", {"name": "Toaster"}, ActorContext(source_id="feed-a"))

    tag = {"tag_id": "t2", "name": "New"}
    job = JobRunner(db, progress=mock.Mock()).run(
        "associate_products",
        ["E1", "E2", "E404"],
        batch_operations.associate_op("add", "tags", tag, notifier=None),
    )

    assert (job.successful_items, job.failed_items) == (2, 1)
    assert job.errors[0]["item"] == "E404"
    e1 = manager.get_current("E1")
    assert [t["tag_id"] for t in e1.data["tags"]] == ["t1", "t2"]
    assert e1.source["source_id"] == "association"
    assert e1.status == "draft"
    assert manager.get_current("E2").data["tags"] == [tag]

    # Adding again is a no-op: no new version
    versions_before = len(manager.list_versions("E1"))
    JobRunner(db, progress=mock.Mock()).run(
        "associate_products", ["E1"], batch_operations.associate_op("add", "tags", tag, notifier=None)
    )
    assert len(manager.list_versions("E1")) == versions_before

    JobRunner(db, progress=mock.Mock()).run(
        "associate_products",
        ["E1"],
        batch_operations.associate_op("remove", "tags", {"tag_id": "t1"}, notifier=None),
    )
    assert [t["tag_id"] for t in manager.get_current("E1").data["tags"]] == ["t2"]


def test_association_respects_locked_fields(db, make_source):
    make_source("feed-a")
    manager = VersionChainManager(db)
    manager.commit("E1", {"brand": "Acme"}, ActorContext(source_id="feed-a"))
    manager.commit("E1", {}, ActorContext(kind="manual", lock_fields=("brand",)))

    job = JobRunner(db, progress=mock.Mock()).run(
        "associate_products",
        ["E1"],
        batch_operations.associate_op("add", "brand", {"brand_id": "b2", "label": "Other"}, notifier=None),
    )

    assert job.failed_items == 1
    assert "locked" in job.errors[0]["error"]
    assert manager.get_current("E1").data["brand"] == "Acme"


def test_bulk_publish_publishes_qualifying_drafts(db, make_source, complete_product):
    make_source("feed-a")
    manager = VersionChainManager(db)
    manager.commit("GOOD", complete_product, ActorContext(source_id="feed-a"))
    manager.commit("NOPRICE", {"name": "Kettle", "images": ["a.jpg"]}, ActorContext(source_id="feed-a"))
    manager.commit(
        "LOW", {"name": "Kettle", "images": ["a.jpg"], "price": 5.0}, ActorContext(source_id="feed-a")
    )

    job = JobRunner(db, progress=mock.Mock()).run(
        "bulk_publish",
        ["GOOD", "NOPRICE", "LOW"],
        batch_operations.publish_op(min_score=50, notifier=None),
    )

    assert (job.successful_items, job.failed_items, job.auto_published_items) == (1, 2, 1)
    errors = {e["item"]: e["error"] for e in job.errors}
    assert errors["NOPRICE"] == "critical issues present: Missing or invalid price"
    assert errors["LOW"].startswith("score 37 below threshold 50")
    good = manager.get_current("GOOD")
    assert good.status == "published"
    assert good.edited_by == "bulk publish"
    assert manager.get_current("LOW").status == "draft"


def test_fail_stale_jobs(db):
    old = datetime.now(timezone.utc) - timedelta(hours=3)
    stale = Job(job_type="bulk_publish", status="processing", items=["E1"], updated_at=old)
    fresh = Job(job_type="bulk_publish", status="processing", items=["E2"])
    done = Job(job_type="bulk_publish", status="completed", items=["E3"], updated_at=old)
    db.add_all([stale, fresh, done])
    db.commit()

    failed = job_service.fail_stale_jobs(db, timedelta(hours=1))

    assert failed == [stale.id]
    db.refresh(stale)
    assert stale.status == "failed"
    assert stale.errors[-1]["item"] == "system"
    db.refresh(fresh)
    assert fresh.status == "processing"
