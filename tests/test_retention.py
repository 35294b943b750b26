import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from photo_attendance.services.object_store import ObjectStoreError
from photo_attendance.services.retention import RetentionSweeper

WEEK = timedelta(days=7)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def sweeper(session_factory, store):
    return RetentionSweeper(
        session_factory, store, retention=WEEK, page_size=2, delete_timeout=0.2
    )


async def test_reclaims_only_records_past_the_window(sweeper, store, make_record, fetch_record):
    jan1 = await make_record("E1", utc(2024, 1, 1, 8, 0))
    jan2 = await make_record("E1", utc(2024, 1, 2, 8, 0))

    report = await sweeper.sweep(now=utc(2024, 1, 8, 12, 0))

    assert report.model_dump() == {"scanned": 1, "deleted": 1, "failed": 0, "flagged": 0}
    reclaimed = await fetch_record(jan1.id)
    kept = await fetch_record(jan2.id)
    assert reclaimed.photo_reclaimed is True
    assert reclaimed.photo_url == ""
    assert reclaimed.photo_storage_id == jan1.photo_storage_id
    assert reclaimed.reclaimed_at is not None
    assert kept.photo_reclaimed is False
    assert kept.photo_url != ""
    assert jan1.photo_storage_id not in store.blobs
    assert jan2.photo_storage_id in store.blobs


async def test_window_boundary_is_exclusive(sweeper, make_record, fetch_record):
    record = await make_record("E1", utc(2024, 1, 1, 8, 0))

    # Exactly seven days old: not yet eligible
    report = await sweeper.sweep(now=utc(2024, 1, 8, 8, 0))
    assert report.scanned == 0
    assert (await fetch_record(record.id)).photo_reclaimed is False

    # One microsecond later it is
    report = await sweeper.sweep(now=utc(2024, 1, 8, 8, 0) + timedelta(microseconds=1))
    assert report.deleted == 1
    assert (await fetch_record(record.id)).photo_reclaimed is True


async def test_sweep_is_idempotent(sweeper, store, make_record):
    for day in (1, 2, 3):
        await make_record("E1", utc(2024, 1, day, 8, 0))

    first = await sweeper.sweep(now=utc(2024, 2, 1))
    deletes_after_first = len(store.deletes)
    second = await sweeper.sweep(now=utc(2024, 2, 1))

    assert first.deleted == 3
    assert second.model_dump() == {"scanned": 0, "deleted": 0, "failed": 0, "flagged": 0}
    assert len(store.deletes) == deletes_after_first


async def test_already_missing_blob_counts_as_deleted(sweeper, store, make_record, fetch_record):
    record = await make_record("E1", utc(2024, 1, 1, 8, 0))
    store.blobs.clear()

    report = await sweeper.sweep(now=utc(2024, 2, 1))

    assert report.deleted == 1
    assert (await fetch_record(record.id)).photo_reclaimed is True


async def test_one_failure_does_not_stop_the_batch(sweeper, store, make_record, fetch_record):
    records = [await make_record(f"E{i}", utc(2024, 1, 1, 8, 0)) for i in range(1, 6)]
    store.delete_errors[records[0].photo_storage_id] = ObjectStoreError("connection reset")
    store.delete_errors[records[3].photo_storage_id] = RuntimeError("unexpected SDK bug")

    report = await sweeper.sweep(now=utc(2024, 2, 1))

    assert report.model_dump() == {"scanned": 5, "deleted": 3, "failed": 2, "flagged": 0}
    states = [(await fetch_record(r.id)).photo_reclaimed for r in records]
    assert states == [False, True, True, False, True]


async def test_transient_failure_is_retried_next_run(sweeper, store, make_record, fetch_record):
    record = await make_record("E1", utc(2024, 1, 1, 8, 0))
    store.delete_errors[record.photo_storage_id] = ObjectStoreError(
        "Object store returned 503", status_code=503
    )

    report = await sweeper.sweep(now=utc(2024, 2, 1))
    assert report.failed == 1
    stored = await fetch_record(record.id)
    assert stored.photo_reclaimed is False
    assert stored.photo_url == record.photo_url

    store.delete_errors.clear()
    report = await sweeper.sweep(now=utc(2024, 2, 1))
    assert report.deleted == 1
    assert (await fetch_record(record.id)).photo_reclaimed is True


async def test_timeout_is_a_transient_failure(sweeper, store, make_record, fetch_record):
    slow = await make_record("E1", utc(2024, 1, 1, 8, 0))
    store.delete_delay = 1.0

    report = await sweeper.sweep(now=utc(2024, 2, 1))

    assert report.failed == 1
    assert (await fetch_record(slow.id)).photo_reclaimed is False


async def test_permanent_failure_closes_and_flags_record(sweeper, store, make_record, fetch_record):
    record = await make_record("E1", utc(2024, 1, 1, 8, 0))
    store.delete_errors[record.photo_storage_id] = ObjectStoreError(
        "Object store returned 400: invalid public_id", permanent=True, status_code=400
    )

    report = await sweeper.sweep(now=utc(2024, 2, 1))

    assert report.model_dump() == {"scanned": 1, "deleted": 0, "failed": 0, "flagged": 1}
    stored = await fetch_record(record.id)
    assert stored.photo_reclaimed is True
    assert stored.photo_url == ""
    assert stored.needs_attention is True
    assert "invalid public_id" in stored.reclaim_error

    # Terminal: never retried
    report = await sweeper.sweep(now=utc(2024, 2, 1))
    assert report.scanned == 0


async def test_pages_through_all_eligible_records(sweeper, store, make_record):
    records = [await make_record(f"E{i}", utc(2024, 1, 1, 8, 0)) for i in range(7)]
    # The first record keeps failing; keyset paging must still move past it.
    store.delete_errors[records[0].photo_storage_id] = ObjectStoreError("timeout")

    report = await sweeper.sweep(now=utc(2024, 2, 1))

    assert report.scanned == 7
    assert report.deleted == 6
    assert report.failed == 1


async def test_concurrent_sweeps_are_serialized(sweeper, store, make_record):
    for i in range(4):
        await make_record(f"E{i}", utc(2024, 1, 1, 8, 0))
    store.delete_delay = 0.01

    first, second = await asyncio.gather(
        sweeper.sweep(now=utc(2024, 2, 1)), sweeper.sweep(now=utc(2024, 2, 1))
    )

    assert first.deleted + second.deleted == 4
    assert len(store.deletes) == 4
    assert not sweeper.running


async def test_custom_retention_window(sweeper, make_record):
    await make_record("E1", utc(2024, 1, 1, 8, 0))

    report = await sweeper.sweep(timedelta(days=30), now=utc(2024, 1, 20))

    assert report.scanned == 0


async def test_zero_retention_reclaims_everything_older_than_now(sweeper, make_record):
    await make_record("E1", utc(2024, 1, 1, 8, 0))

    report = await sweeper.sweep(timedelta(0), now=utc(2024, 1, 2))

    assert report.deleted == 1


async def test_zero_retention_given_at_construction_is_kept(session_factory, store):
    sweeper = RetentionSweeper(session_factory, store, retention=timedelta(0))

    assert sweeper.retention == timedelta(0)
