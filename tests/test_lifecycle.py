"""Tests for request scopes, the codec gate wrapper and the memory sweep."""

import asyncio
from unittest.mock import patch

import pytest
from PIL import Image

from config import CodecConfig, Settings
from exceptions import CodecFailureError
from tests.helpers import make_image
from utils.image_handle import ImageHandle
from utils.lifecycle import LifecycleManager, RequestScope, RequestState


@pytest.fixture
def manager():
    return LifecycleManager(CodecConfig(), sweep_interval=0)


# --- RequestScope ---


def test_happy_path_transitions():
    scope = RequestScope("grayscale")
    scope.transition(RequestState.DECODING)
    scope.holds_gate = True
    scope.transition(RequestState.TRANSFORMING)
    scope.transition(RequestState.ENCODING)
    scope.holds_gate = False
    scope.transition(RequestState.RESPONDING)
    scope.release()
    assert scope.history == [
        RequestState.RECEIVED,
        RequestState.DECODING,
        RequestState.TRANSFORMING,
        RequestState.ENCODING,
        RequestState.RESPONDING,
        RequestState.RELEASED,
    ]


def test_transforming_requires_gate():
    scope = RequestScope("grayscale")
    scope.transition(RequestState.DECODING)
    with pytest.raises(RuntimeError):
        scope.transition(RequestState.TRANSFORMING)


def test_illegal_transition_rejected():
    scope = RequestScope("grayscale")
    with pytest.raises(RuntimeError):
        scope.transition(RequestState.RESPONDING)


def test_released_reachable_from_any_state():
    scope = RequestScope("grayscale")
    scope.transition(RequestState.DECODING)
    scope.release()
    assert scope.state == RequestState.RELEASED


def test_release_is_idempotent():
    scope = RequestScope("grayscale")
    scope.release()
    scope.release()
    assert scope.history.count(RequestState.RELEASED) == 1


def test_release_closes_tracked_buffers():
    scope = RequestScope("grayscale")
    img = scope.track(Image.new("RGB", (10, 10)))
    scope.track(img)
    assert scope.live_buffers == 1
    scope.release_surfaces()
    assert scope.live_buffers == 0
    with pytest.raises(ValueError):
        img.getpixel((0, 0))


# --- LifecycleManager ---


@pytest.mark.asyncio
async def test_codec_slot_releases_buffers_before_next_request(manager):
    """Buffers of request A are gone before request B holds the gate."""
    scope_a = manager.open_scope("grayscale")
    handle_a = ImageHandle.open(make_image(), scope_a)
    seen_by_b = []

    async def request_b():
        scope_b = manager.open_scope("invert")
        scope_b.transition(RequestState.DECODING)
        async with manager.codec_slot(scope_b):
            seen_by_b.append(scope_a.live_buffers)

    async with manager.codec_slot(scope_a):
        handle_a.track(handle_a.surface.convert("L"))
        task = asyncio.create_task(request_b())
        await asyncio.sleep(0)
        assert scope_a.live_buffers > 0

    await task
    assert seen_by_b == [0]


@pytest.mark.asyncio
async def test_codec_slot_releases_on_error(manager):
    scope = manager.open_scope("grayscale")
    handle = ImageHandle.open(make_image(), scope)

    with pytest.raises(CodecFailureError):
        async with manager.codec_slot(scope):
            handle.track(handle.surface.copy())
            raise CodecFailureError("boom")

    assert scope.live_buffers == 0
    assert manager.gate.active_jobs == 0
    assert not scope.holds_gate


@pytest.mark.asyncio
async def test_codec_slot_enters_transforming(manager):
    scope = manager.open_scope("grayscale")
    scope.transition(RequestState.DECODING)
    async with manager.codec_slot(scope):
        assert scope.state == RequestState.TRANSFORMING
        assert scope.holds_gate


def test_apply_codec_config_once(manager):
    with patch("pillow_heif.register_heif_opener") as register:
        manager.apply_codec_config()
        manager.apply_codec_config()
    assert register.call_count == 1
    assert Image.MAX_IMAGE_PIXELS == manager.codec_config.max_image_pixels


def test_sweep_collects(manager):
    with patch("gc.collect", return_value=3) as collect:
        assert manager.sweep() == 3
    collect.assert_called_once()
    assert manager.sweeps == 1


@pytest.mark.asyncio
async def test_sweep_loop_runs_periodically():
    manager = LifecycleManager(CodecConfig(), sweep_interval=1)
    calls = 0

    async def fake_sleep(_):
        nonlocal calls
        calls += 1
        if calls > 2:
            raise asyncio.CancelledError

    with patch.object(manager, "sweep") as sweep:
        with patch("utils.lifecycle.asyncio.sleep", side_effect=fake_sleep):
            with pytest.raises(asyncio.CancelledError):
                await manager._sweep_loop()
    assert sweep.call_count == 2


@pytest.mark.asyncio
async def test_start_and_stop():
    manager = LifecycleManager(CodecConfig(), sweep_interval=3600)
    manager.start()
    assert manager._sweep_task is not None
    await manager.stop()
    assert manager._sweep_task is None


def test_from_settings():
    s = Settings(gc_sweep_interval_seconds=0, max_image_pixels=1_000_000)
    manager = LifecycleManager.from_settings(s)
    assert manager.sweep_interval == 0
    assert manager.codec_config.max_image_pixels == 1_000_000
    assert manager.gate.snapshot() == {"active": 0, "waiting": 0}
