"""Tests for the staging store and its deferred deletion table."""
import asyncio

import pytest

from conftest import files_in

from image_workbench.staging import ArtifactStore, StagingConfig


def test_start_creates_dirs(tmp_path):
    store = ArtifactStore(StagingConfig(tmp_path / "in", tmp_path / "out"))
    assert not (tmp_path / "in").exists()

    store.start()

    assert (tmp_path / "in").is_dir()
    assert (tmp_path / "out").is_dir()


def test_stage_writes_under_unique_name(store):
    a = store.stage(b"one", "PNG", original_filename="photo.png", mime_type="image/png")
    b = store.stage(b"two", ".png", original_filename="photo.png")

    assert a.stored_path != b.stored_path
    assert a.stored_path.parent == store.inbound_dir
    assert a.stored_path.suffix == ".png"
    assert a.stored_path.read_bytes() == b"one"
    assert a.size_bytes == 3
    assert a.original_filename == "photo.png"
    assert a.declared_mime_type == "image/png"
    assert a.id != b.id


def test_unique_names_differ():
    names = {ArtifactStore.unique_name("jpg") for _ in range(200)}
    assert len(names) == 200


def test_scheduled_file_survives_until_delay_elapses(store, clock):
    asset = store.stage(b"data", "png")
    store.schedule_delete(asset.stored_path)

    clock.advance(59)
    assert store.sweep() == 0
    assert asset.stored_path.exists()

    clock.advance(1)
    assert store.sweep() == 1
    assert not asset.stored_path.exists()
    assert store.pending() == {}


def test_rescheduling_keeps_one_entry_with_latest_deadline(store, clock):
    asset = store.stage(b"data", "png")
    store.schedule_delete(asset.stored_path, delay=10)
    store.schedule_delete(asset.stored_path, delay=30)
    store.schedule_delete(asset.stored_path, delay=5)

    assert list(store.pending()) == [asset.stored_path]

    clock.advance(20)
    store.sweep()
    assert asset.stored_path.exists()

    clock.advance(10)
    store.sweep()
    assert not asset.stored_path.exists()


def test_sweep_tolerates_files_already_gone(store, clock):
    asset = store.stage(b"data", "png")
    store.schedule_delete(asset.stored_path, delay=0)
    asset.stored_path.unlink()

    assert store.sweep() == 1
    assert store.pending() == {}


def test_delete_now_drops_pending_entry(store):
    asset = store.stage(b"data", "png")
    store.schedule_delete(asset.stored_path)

    store.delete_now(asset.stored_path)
    store.delete_now(asset.stored_path)

    assert not asset.stored_path.exists()
    assert store.pending() == {}


def test_stop_removes_everything_pending(store):
    staged = [store.stage(b"x", "png").stored_path for _ in range(3)]
    output = store.outbound_path("zip")
    output.write_bytes(b"zip")
    store.schedule_delete_many(staged + [output])

    store.stop()

    assert files_in(store.inbound_dir) == []
    assert files_in(store.outbound_dir) == []
    assert store.pending() == {}


def test_run_sweeper_sweeps_periodically(tmp_path):
    store = ArtifactStore(StagingConfig(tmp_path / "in", tmp_path / "out", cleanup_delay=0, sweep_interval=0.01))
    store.start()
    asset = store.stage(b"data", "png")
    store.schedule_delete(asset.stored_path)

    async def run_briefly():
        task = asyncio.create_task(store.run_sweeper())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run_briefly())

    assert not asset.stored_path.exists()
