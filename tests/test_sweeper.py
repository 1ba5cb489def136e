import io
import logging

import pytest

from app.coordinator import AccessCoordinator
from app.core.exceptions import LinkGone, StorageFailure
from app.core.metrics import MetricsStore
from app.registry import LinkRegistry
from app.storage import BlobStore
from app.sweeper import start_sweeper, sweep_expired


class FlakyDeleteStore(BlobStore):
    def __init__(self, root, failing):
        super().__init__(root)
        self.failing = set(failing)

    def delete(self, blob_id):
        if blob_id in self.failing:
            raise StorageFailure(blob_id, OSError("device busy"))
        return super().delete(blob_id)


def _coordinator(store, clock, ttl=10):
    return AccessCoordinator(
        LinkRegistry(clock=clock),
        store,
        max_downloads=3,
        ttl_seconds=ttl,
        metrics=MetricsStore(),
    )


def _upload(coordinator, data=b"x"):
    return coordinator.register_upload(io.BytesIO(data), "f.bin", None).link_id


def test_sweep_removes_only_expired_links(tmp_path, clock):
    coordinator = _coordinator(BlobStore(tmp_path), clock)
    stale = [_upload(coordinator) for _ in range(3)]
    clock.advance(11)
    coordinator.ttl_seconds = 100
    live = _upload(coordinator)

    assert sweep_expired(coordinator) == 3

    assert len(coordinator.registry) == 1
    assert live in coordinator.registry
    assert all(link_id not in coordinator.registry for link_id in stale)
    assert len(list(tmp_path.iterdir())) == 1
    assert sweep_expired(coordinator) == 0


def test_sweep_after_access_found_expiry_has_nothing_to_do(tmp_path, clock):
    coordinator = _coordinator(BlobStore(tmp_path), clock, ttl=1)
    link_id = _upload(coordinator)
    clock.advance(2)

    with pytest.raises(LinkGone):
        coordinator.handle_download(link_id)

    assert sweep_expired(coordinator) == 0
    assert coordinator.metrics.snapshot()["deleted"] == 1


def test_sweep_picks_up_drained_entries(tmp_path, clock):
    coordinator = _coordinator(BlobStore(tmp_path), clock, ttl=1000)
    link_id = _upload(coordinator)
    entry = coordinator.registry.get(link_id)
    entry.remaining_downloads = 0

    assert sweep_expired(coordinator) == 1
    assert link_id not in coordinator.registry
    assert not (tmp_path / entry.blob_id).exists()


def test_sweep_continues_past_delete_failures(tmp_path, clock, caplog):
    coordinator = _coordinator(BlobStore(tmp_path), clock)
    ids = [_upload(coordinator) for _ in range(3)]
    broken_blob = coordinator.registry.get(ids[0]).blob_id
    coordinator.blob_store = FlakyDeleteStore(tmp_path, [broken_blob])
    clock.advance(11)

    assert sweep_expired(coordinator) == 3

    assert len(coordinator.registry) == 0
    assert [p.name for p in tmp_path.iterdir()] == [broken_blob]
    assert "event=blob_delete_failure" in caplog.text


def test_sweep_survives_unexpected_errors(tmp_path, clock, monkeypatch, caplog):
    coordinator = _coordinator(BlobStore(tmp_path), clock)
    first, second = _upload(coordinator), _upload(coordinator)
    clock.advance(11)
    real_discard = coordinator.discard

    def _discard(link_id, reason="expired"):
        if link_id == first:
            raise RuntimeError("boom")
        return real_discard(link_id, reason)

    monkeypatch.setattr(coordinator, "discard", _discard)

    assert sweep_expired(coordinator) == 1
    assert second not in coordinator.registry
    assert "event=sweep_failure" in caplog.text


def test_start_sweeper_schedules_interval_job(tmp_path, clock):
    coordinator = _coordinator(BlobStore(tmp_path), clock)
    scheduler = start_sweeper(coordinator, MetricsStore(), logging.getLogger("test"), 30)
    try:
        job = scheduler.get_job("expiry-sweep")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 30
        assert job.max_instances == 1
    finally:
        scheduler.shutdown(wait=False)
    assert not scheduler.running
