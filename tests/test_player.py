"""Unit tests for the playback engine base and the ffplay engine."""

import asyncio

import pytest

from conftest import FakeEngine
from torjolan.player import FAILED, READY, FFPlayEngine


@pytest.mark.asyncio
async def test_load_hands_out_new_tokens():
    """Test every load gets a fresh token and releases the previous media."""
    engine = FakeEngine()

    first = await engine.load("a.mp3")
    second = await engine.load("b.mp3")

    assert second == first + 1
    assert engine.actions == ["load:a.mp3", "release", "load:b.mp3"]
    await engine.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    """Test stop without media does nothing."""
    engine = FakeEngine()
    await engine.stop()
    await engine.load("a.mp3")
    await engine.stop()
    await engine.stop()

    assert engine.releases == 1
    assert engine.is_loaded is False


@pytest.mark.asyncio
async def test_events_carry_token():
    """Test emitted events are tagged with the current token."""
    engine = FakeEngine()
    token = await engine.load("a.mp3")
    engine.report(READY, duration=30.0)

    event = await asyncio.wait_for(engine.next_event(), 1)

    assert (event.kind, event.token, event.duration) == (READY, token, 30.0)
    await engine.stop()


@pytest.mark.asyncio
async def test_polling_ticks_while_loaded():
    """Test the tick callback runs while loaded and stops with the media."""
    engine = FakeEngine(tick_interval=0.01)
    ticks = []

    async def on_tick(position, duration):
        ticks.append(position)

    engine.set_tick_callback(on_tick)
    await engine.load("a.mp3")
    await asyncio.sleep(0.06)
    await engine.stop()
    count = len(ticks)
    await asyncio.sleep(0.03)

    assert count > 0
    assert len(ticks) == count


def test_tick_interval_is_capped():
    """Test position updates are at least twice a second."""
    assert FakeEngine(tick_interval=5.0)._tick_interval == 0.5


@pytest.mark.asyncio
async def test_seek_clamps():
    """Test seek positions are clamped to the track."""
    engine = FakeEngine()
    await engine.load("a.mp3")
    engine.report(READY, duration=100.0)

    assert await engine.seek(-3) == 0.0
    assert await engine.seek(150) == 100.0
    await engine.stop()


@pytest.mark.asyncio
async def test_ffplay_engine_reports_missing_probe():
    """Test a missing ffprobe surfaces as a failed event for that media."""
    engine = FFPlayEngine(ffprobe="/nonexistent/ffprobe", ffplay="/nonexistent/ffplay")

    token = await engine.load("https://cdn.example.com/1.mp3")
    event = await asyncio.wait_for(engine.next_event(), 2)

    assert event.kind == FAILED
    assert event.token == token
    assert "ffprobe" in event.reason

    # Not ready, so play does nothing
    await engine.play()
    assert engine.is_paused is False
    await engine.stop()
    assert engine.is_loaded is False
