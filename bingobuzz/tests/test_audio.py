"""Tests for the AudioEngine playback state machine."""

import asyncio

import pytest

from ..engine.audio import AudioEngine, AudioState
from ..engine.backends import FADE_FLOOR, SoundBackend, StreamBackend
from ..engine.errors import (
    ClipSourceError,
    PlaybackBlockedError,
    PlaybackBusyError,
    PlaybackCancelledError,
)
from ..engine.events import EndReason
from .fakes import BASE_URL, FakeMixer, StreamOnlyMixer, make_clip, make_fetcher


@pytest.fixture
def mixer():
    return FakeMixer()


@pytest.fixture
def fetch():
    return make_fetcher(slow_paths=("slow",))


@pytest.fixture
def engine(mixer, fetch):
    fetcher, _ = fetch
    return AudioEngine(base_path=BASE_URL, backend=SoundBackend(mixer), fetcher=fetcher, poll_interval=0.01)


def record(engine, event="ended"):
    seen = []
    engine.on(event, seen.append)
    return seen


async def test_play_starts_sound(engine, mixer, fetch):
    _, requests = fetch
    clip = make_clip("gong")
    await engine.play(clip)

    assert engine.state is AudioState.PLAYING
    assert engine.current_clip is clip
    assert engine.backend_name == "sound"
    assert requests == ["/sounds/gong.webm"]
    assert len(mixer.channels) == 1
    assert mixer.channels[0].volume == pytest.approx(1.0)


async def test_play_applies_gain(engine, mixer):
    await engine.play(make_clip("quiet", gain=-6.0))
    assert mixer.channels[0].volume == pytest.approx(0.501, abs=0.001)


async def test_play_while_playing_is_busy_without_fetch(engine, fetch):
    _, requests = fetch
    await engine.play(make_clip("gong"))
    before = len(requests)

    with pytest.raises(PlaybackBusyError):
        await engine.play(make_clip("pling"))

    assert len(requests) == before
    assert engine.state is AudioState.PLAYING
    assert engine.current_clip.id == "gong"


async def test_play_while_fading_is_busy(engine):
    await engine.play(make_clip("gong"))
    fade = asyncio.create_task(engine.fade_out(200))
    await asyncio.sleep(0.02)
    assert engine.state is AudioState.FADING
    with pytest.raises(PlaybackBusyError):
        await engine.play(make_clip("pling"))
    await fade


async def test_play_falls_through_candidates(engine, fetch):
    _, requests = fetch
    engine.configure(formats=["missing-fmt", "mp3"])
    await engine.play(make_clip("gong"))
    assert requests == ["/sounds/gong.missing-fmt", "/sounds/gong.mp3"]
    assert engine.state is AudioState.PLAYING


async def test_undecodable_candidate_falls_through(engine, mixer):
    clip = make_clip("corrupt", base_path="https://clips.test/alt")
    with pytest.raises(ClipSourceError):
        await engine.play(clip)
    assert mixer.channels == []


async def test_all_candidates_fail(engine):
    ended = record(engine)
    clip = make_clip("missing-clip")
    with pytest.raises(ClipSourceError):
        await engine.play(clip)

    assert engine.state is AudioState.ERROR
    assert engine.current_clip is None
    assert isinstance(engine.last_error, ClipSourceError)
    assert [e.reason for e in ended] == [EndReason.ERROR]
    assert ended[0].clip is clip

    # error state is left by the next play
    await engine.play(make_clip("gong"))
    assert engine.state is AudioState.PLAYING
    assert engine.last_error is None


async def test_play_without_clip_fails_fast(engine):
    from ..engine.errors import AudioEngineError

    with pytest.raises(AudioEngineError):
        await engine.play(None)
    with pytest.raises(AudioEngineError):
        await engine.play(make_clip("", source_name=""))
    assert engine.state is AudioState.IDLE


async def test_blocked_output_is_not_retried(fetch):
    fetcher, requests = fetch
    blocked = FakeMixer(init_error="No available audio device")
    engine = AudioEngine(base_path=BASE_URL, backend=SoundBackend(blocked), fetcher=fetcher)

    with pytest.raises(PlaybackBlockedError) as info:
        await engine.play(make_clip("gong"))

    assert info.value.retryable is False
    assert requests == []
    assert engine.state is AudioState.ERROR


@pytest.mark.parametrize("duration_ms", [0, 150])
async def test_fade_out_emits_faded_once(engine, mixer, duration_ms):
    ended = record(engine)
    await engine.play(make_clip("gong"))

    loop = asyncio.get_running_loop()
    started = loop.time()
    await engine.fade_out(duration_ms)
    elapsed = loop.time() - started

    assert elapsed >= duration_ms / 1000.0 - 0.001
    assert [e.reason for e in ended] == [EndReason.FADED]
    assert engine.state is AudioState.IDLE
    assert engine.current_clip is None
    assert mixer.channels[0].stopped is True
    if duration_ms:
        assert mixer.channels[0].fadeout_calls == [duration_ms]

    # nothing more arrives once the watcher would have run
    await asyncio.sleep(0.05)
    assert len(ended) == 1


async def test_fade_out_when_idle_is_noop(engine):
    ended = record(engine)
    await engine.fade_out(100)
    assert ended == []
    assert engine.state is AudioState.IDLE


async def test_second_fade_is_ignored(engine):
    ended = record(engine)
    await engine.play(make_clip("gong"))
    first = asyncio.create_task(engine.fade_out(100))
    await asyncio.sleep(0.01)
    await engine.fade_out(100)
    await first
    assert [e.reason for e in ended] == [EndReason.FADED]


async def test_stop_immediate_preempts_fade(engine):
    ended = record(engine)
    await engine.play(make_clip("gong"))
    fade = asyncio.create_task(engine.fade_out(500))
    await asyncio.sleep(0.05)

    engine.stop_immediate()
    await fade

    assert [e.reason for e in ended] == [EndReason.STOPPED]
    assert engine.state is AudioState.IDLE


async def test_stop_immediate_when_idle_emits_nothing(engine):
    ended = record(engine)
    engine.stop_immediate()
    assert ended == []
    assert engine.state is AudioState.IDLE


async def test_stop_during_start_cancels_play(engine, mixer):
    ended = record(engine)
    play = asyncio.create_task(engine.play(make_clip("slow-clip")))
    await asyncio.sleep(0.05)
    assert engine.state is AudioState.PLAYING

    engine.stop_immediate()
    with pytest.raises(PlaybackCancelledError):
        await play

    assert [e.reason for e in ended] == [EndReason.STOPPED]
    assert engine.state is AudioState.IDLE
    assert all(channel.stopped for channel in mixer.channels)


async def test_stale_start_never_reaches_the_mixer(engine, mixer):
    ended = record(engine)
    stale = asyncio.create_task(engine.play(make_clip("slow-a")))
    await asyncio.sleep(0.05)
    engine.stop_immediate()

    await engine.play(make_clip("b"))
    with pytest.raises(PlaybackCancelledError):
        await stale

    assert engine.state is AudioState.PLAYING
    assert engine.current_clip.id == "b"
    assert len(mixer.channels) == 1
    assert mixer.channels[0].busy is True
    assert [(e.clip.id, e.reason) for e in ended] == [("slow-a", EndReason.STOPPED)]


async def test_stale_start_keeps_newer_stream(fetch):
    fetcher, _ = fetch
    mixer = StreamOnlyMixer()
    engine = AudioEngine(base_path=BASE_URL, backend=StreamBackend(mixer), fetcher=fetcher, poll_interval=0.01)
    ended = record(engine)

    stale = asyncio.create_task(engine.play(make_clip("slow-a")))
    await asyncio.sleep(0.05)
    engine.stop_immediate()
    await engine.play(make_clip("b"))
    with pytest.raises(PlaybackCancelledError):
        await stale
    await asyncio.sleep(0.03)

    assert engine.state is AudioState.PLAYING
    assert mixer.music.busy is True
    assert mixer.music.loaded == b"OK:/sounds/b.webm"
    assert mixer.music.play_count == 1
    assert [(e.clip.id, e.reason) for e in ended] == [("slow-a", EndReason.STOPPED)]
    await engine.aclose()


async def test_cancelled_caller_does_not_leave_engine_busy(engine, mixer):
    ended = record(engine)
    play = asyncio.create_task(engine.play(make_clip("slow-a")))
    await asyncio.sleep(0.05)

    play.cancel()
    with pytest.raises(asyncio.CancelledError):
        await play

    assert engine.state is AudioState.IDLE
    assert engine.current_clip is None
    assert [e.reason for e in ended] == [EndReason.STOPPED]

    await engine.play(make_clip("b"))
    assert engine.state is AudioState.PLAYING
    assert len(mixer.channels) == 1


async def test_natural_end_emits_ended(engine, mixer):
    ended = record(engine)
    await engine.play(make_clip("gong"))
    mixer.channels[0].busy = False
    await asyncio.sleep(0.05)

    assert [e.reason for e in ended] == [EndReason.ENDED]
    assert engine.state is AudioState.IDLE


async def test_state_events_follow_transitions(engine):
    states = record(engine, "state")
    await engine.play(make_clip("gong"))
    await engine.fade_out(0)
    assert [s.current for s in states] == ["playing", "fading", "idle"]


async def test_unsubscribe_and_failing_listener(engine):
    def boom(_event):
        raise RuntimeError("listener bug")

    engine.on("ended", boom)
    ended = []
    unsubscribe = engine.on("ended", ended.append)
    unsubscribe()

    await engine.play(make_clip("gong"))
    engine.stop_immediate()
    assert ended == []
    assert engine.state is AudioState.IDLE


async def test_prepare_warms_cache_for_play(engine, fetch):
    fetcher, requests = fetch
    clip = make_clip("gong")
    task = engine.prepare(clip)
    await task
    assert fetcher.is_cached(f"{BASE_URL}/gong.webm")

    await engine.play(clip)
    assert requests == ["/sounds/gong.webm"]
    assert fetcher.fetch_count == 1


async def test_prepare_failure_is_swallowed(engine):
    task = engine.prepare(make_clip("missing-clip"))
    await task
    assert engine.state is AudioState.IDLE


async def test_new_prepare_supersedes_old(engine, fetch):
    fetcher, _ = fetch
    first = engine.prepare(make_clip("slow-one"))
    second = engine.prepare(make_clip("gong"))
    await second
    await asyncio.sleep(0)
    assert first.cancelled()
    assert fetcher.is_cached(f"{BASE_URL}/gong.webm")
    assert not fetcher.is_cached(f"{BASE_URL}/slow-one.webm")


async def test_cancel_prepare_discards_cache(engine, fetch):
    fetcher, _ = fetch
    await engine.prepare(make_clip("gong"))
    engine.cancel_prepare()
    assert not fetcher.is_cached(f"{BASE_URL}/gong.webm")


async def test_configure_ignores_blank_values(engine):
    engine.configure(base_path="  ", formats=["", "  "])
    assert engine.base_path == BASE_URL
    assert engine.formats == ["webm", "mp3"]


async def test_stream_backend_ramps_volume(fetch):
    fetcher, _ = fetch
    mixer = StreamOnlyMixer()
    engine = AudioEngine(base_path=BASE_URL, backend=StreamBackend(mixer), fetcher=fetcher, poll_interval=0.01)
    ended = record(engine)

    await engine.play(make_clip("gong"))
    assert mixer.music.hint == "webm"
    assert mixer.music.busy is True

    await engine.fade_out(100)

    ramp = mixer.music.volume_history[1:-1]
    assert ramp, "expected intermediate volume steps"
    assert all(b <= a for a, b in zip(ramp, ramp[1:]))
    assert ramp[-1] == pytest.approx(FADE_FLOOR)
    assert mixer.music.busy is False
    assert [e.reason for e in ended] == [EndReason.FADED]
