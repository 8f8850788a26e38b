"""
StreamingSession 단위 테스트

검증 항목:
- 상태 전이: start 중복 StateError, start 전 push StateError, idle stop은 무시
- 임계값 미만 오디오 + stop → final 1개, partial 0개, 버퍼 전체 전사
- 임계값 초과 → partial 발행 후 final (final 이후 partial 없음)
- 주기 flush 실패는 에러 채널로 보고되고 세션은 계속 동작
- final drain 실패는 stop() 호출자에게 전파되며 버퍼는 해제됨
- 진행 중인 flush는 stop()이 끝까지 기다림
- aclose()는 listening 중이면 drain 후 해제, 이후 LifecycleError
- 여러 스레드의 push와 주기 flush가 동시에 실행되어도 블록이 섞이거나 잘리지 않음
"""

from __future__ import annotations

import asyncio
import threading
import time

import numpy as np
import pytest

from voicetotext.config.schema import AppConfig
from voicetotext.errors import EngineError, FormatError, LifecycleError, StateError
from voicetotext.stt import StreamingRecognitionEvent, TranscriptionSegment
from voicetotext.stt.engine import EngineCache
from voicetotext.stt.streaming import IDLE, LISTENING, StreamingSession


# =============================================================================
# 테스트 헬퍼
# =============================================================================

class _ScriptedEngine:
    """
    호출마다 "first", "text{n}" 두 세그먼트를 반환하는 가짜 엔진입니다.

    fail_calls에 포함된 호출 번호(0부터)에서는 RuntimeError를 발생시킵니다.
    """

    def __init__(self, fail_calls=(), fail_all: bool = False, delay_sec: float = 0.0, empty: bool = False) -> None:
        self.fail_calls = set(fail_calls)
        self.fail_all = fail_all
        self.delay_sec = delay_sec
        self.empty = empty
        self.sample_counts: list[int] = []
        self.snapshots: list[np.ndarray] = []
        self.started = threading.Event()

    def transcribe(self, samples, options):
        call_index = len(self.sample_counts)
        self.sample_counts.append(len(samples))
        self.snapshots.append(np.array(samples, copy=True))
        self.started.set()
        if self.delay_sec:
            time.sleep(self.delay_sec)
        if self.fail_all or call_index in self.fail_calls:
            raise RuntimeError(f"engine failure on call {call_index}")
        if self.empty:
            return [TranscriptionSegment(text="  ", start=0.0, end=0.1)]
        return [
            TranscriptionSegment(text=" first ", start=0.0, end=0.5),
            TranscriptionSegment(text=f" text{call_index} ", start=0.5, end=1.0),
        ]


def _make_config(buffer_duration_sec: float = 1.0, poll_interval_ms: int = 10) -> AppConfig:
    return AppConfig(**{
        "engine": {"model_path": "fake"},
        "streaming": {
            "buffer_duration_sec": buffer_duration_sec,
            "poll_interval_ms": poll_interval_ms,
        },
    })


def _make_session(engine: _ScriptedEngine, **config_kwargs) -> tuple[StreamingSession, list]:
    session = StreamingSession(_make_config(**config_kwargs), EngineCache(lambda model_path: engine))
    events: list[StreamingRecognitionEvent] = []
    session.subscribe_partial(events.append)
    session.subscribe_final(events.append)
    return session, events


def _silence(duration_sec: float) -> bytes:
    return np.zeros(int(16000 * duration_sec), dtype="<i2").tobytes()


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("조건 대기 시간 초과")
        await asyncio.sleep(0.005)


# =============================================================================
# 상태 전이 테스트
# =============================================================================

@pytest.mark.asyncio
async def test_initial_state_is_idle():
    session, _ = _make_session(_ScriptedEngine())
    assert session.state == IDLE
    assert not session.is_listening
    assert session.buffered_bytes == 0


@pytest.mark.asyncio
async def test_start_twice_raises_state_error():
    session, _ = _make_session(_ScriptedEngine())
    await session.start()
    try:
        assert session.state == LISTENING
        with pytest.raises(StateError):
            await session.start()
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_push_before_start_raises_state_error():
    session, _ = _make_session(_ScriptedEngine())
    with pytest.raises(StateError):
        session.push(_silence(0.1))
    with pytest.raises(StateError):
        session.push_float([0.0, 0.1])


@pytest.mark.asyncio
async def test_stop_when_idle_is_noop():
    engine = _ScriptedEngine()
    session, events = _make_session(engine)

    await session.stop()

    assert events == []
    assert engine.sample_counts == []


@pytest.mark.asyncio
async def test_push_after_stop_raises_state_error():
    session, _ = _make_session(_ScriptedEngine())
    await session.start()
    await session.stop()
    with pytest.raises(StateError):
        session.push_pcm(_silence(0.1))


@pytest.mark.asyncio
async def test_push_odd_length_raises_format_error():
    session, _ = _make_session(_ScriptedEngine())
    await session.start()
    try:
        with pytest.raises(FormatError):
            session.push_pcm(b"\x00\x01\x02")
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_odd_length_push_while_idle_raises_state_error():
    """idle 상태 검사가 길이 검사보다 먼저 수행되어야 합니다."""
    session, _ = _make_session(_ScriptedEngine())
    with pytest.raises(StateError):
        session.push_pcm(b"\x00\x01\x02")


@pytest.mark.asyncio
async def test_session_can_restart_after_stop():
    engine = _ScriptedEngine()
    session, events = _make_session(engine)

    for _ in range(2):
        await session.start()
        session.push(_silence(0.1))
        await session.stop()

    assert [e.is_final for e in events] == [True, True]
    assert engine.sample_counts == [1600, 1600]


# =============================================================================
# partial / final 이벤트 테스트
# =============================================================================

@pytest.mark.asyncio
async def test_below_threshold_gives_single_final_event():
    """버퍼 1초, 0.5초만 push 후 stop → final 1개, partial 0개"""
    engine = _ScriptedEngine()
    session, events = _make_session(engine, buffer_duration_sec=1.0)

    await session.start()
    session.push(_silence(0.5))
    await session.stop()

    assert len(events) == 1
    assert events[0].is_final is True
    assert events[0].text == "first text0"
    assert engine.sample_counts == [8000]


@pytest.mark.asyncio
async def test_no_audio_gives_no_final_event():
    engine = _ScriptedEngine()
    session, events = _make_session(engine)

    await session.start()
    await session.stop()

    assert events == []
    assert engine.sample_counts == []


@pytest.mark.asyncio
async def test_empty_final_text_emits_nothing():
    session, events = _make_session(_ScriptedEngine(empty=True))
    await session.start()
    session.push(_silence(0.1))
    await session.stop()
    assert events == []


@pytest.mark.asyncio
async def test_zero_threshold_skips_flush_of_empty_buffer():
    """임계값이 0 bytes로 계산되어도 빈 버퍼로는 엔진을 호출하지 않아야 합니다."""
    engine = _ScriptedEngine()
    session, events = _make_session(engine, buffer_duration_sec=1e-6)
    assert session.threshold_bytes == 0

    await session.start()
    await asyncio.sleep(0.1)
    await session.stop()

    assert engine.sample_counts == []
    assert events == []


@pytest.mark.asyncio
async def test_threshold_exceeded_emits_partial_then_final():
    engine = _ScriptedEngine()
    session, events = _make_session(engine, buffer_duration_sec=0.05)

    await session.start()
    session.push(_silence(0.1))
    await _wait_until(lambda: len(events) >= 1)
    session.push(_silence(0.1))
    await _wait_until(lambda: len(engine.sample_counts) >= 2)
    await session.stop()

    assert len(events) >= 2
    assert all(not e.is_final for e in events[:-1])
    assert events[-1].is_final is True
    # partial은 마지막 세그먼트 텍스트, final은 전체 세그먼트 결합
    assert events[0].text == "text0"
    assert events[-1].text.startswith("first text")
    # 버퍼는 비워지지 않으므로 final은 누적된 전체 오디오를 전사
    assert engine.sample_counts[-1] == 3200


@pytest.mark.asyncio
async def test_partial_snapshots_accumulate_from_session_start():
    engine = _ScriptedEngine()
    session, events = _make_session(engine, buffer_duration_sec=0.05)

    await session.start()
    session.push(_silence(0.1))
    await _wait_until(lambda: len(engine.sample_counts) >= 1)
    session.push(_silence(0.1))
    await _wait_until(lambda: any(count == 3200 for count in engine.sample_counts))
    await session.stop()

    assert engine.sample_counts == sorted(engine.sample_counts)
    assert engine.sample_counts[0] >= 1600


@pytest.mark.asyncio
async def test_result_queue_receives_events_in_order():
    session, events = _make_session(_ScriptedEngine(), buffer_duration_sec=0.05)
    queue = session.get_result_queue()

    await session.start()
    session.push(_silence(0.1))
    await _wait_until(lambda: len(events) >= 1)
    await session.aclose()

    queued = []
    while not queue.empty():
        queued.append(queue.get_nowait())

    assert queued[-1] is None
    assert queued[:-1] == events


@pytest.mark.asyncio
async def test_push_float_converts_to_pcm16():
    engine = _ScriptedEngine()
    session, events = _make_session(engine)

    await session.start()
    session.push(np.full(800, 0.25, dtype=np.float32))
    assert session.buffered_bytes == 1600
    await session.stop()

    assert engine.sample_counts == [800]
    assert session.buffered_bytes == 0


@pytest.mark.asyncio
async def test_push_int16_array_is_stored_as_pcm():
    engine = _ScriptedEngine()
    session, _ = _make_session(engine)

    await session.start()
    session.push(np.array([1000, -1000], dtype=np.int16))
    assert session.buffered_bytes == 4
    await session.stop()

    np.testing.assert_array_equal(
        np.round(engine.snapshots[-1] * 32768.0).astype(np.int32), [1000, -1000]
    )


@pytest.mark.asyncio
async def test_push_other_integer_arrays_raise_format_error():
    session, _ = _make_session(_ScriptedEngine())

    await session.start()
    try:
        with pytest.raises(FormatError):
            session.push(np.array([1000, -1000], dtype=np.int32))
        with pytest.raises(FormatError):
            session.push_float(np.array([1000, -1000], dtype=np.int16))
        assert session.buffered_bytes == 0
    finally:
        await session.stop()


# =============================================================================
# 실패 처리 테스트
# =============================================================================

@pytest.mark.asyncio
async def test_periodic_flush_failure_reported_and_session_continues():
    engine = _ScriptedEngine(fail_calls={0})
    session, events = _make_session(engine, buffer_duration_sec=0.05)
    errors: list[Exception] = []
    session.subscribe_error(errors.append)

    await session.start()
    session.push(_silence(0.1))
    await _wait_until(lambda: len(errors) >= 1 and len(events) >= 1)
    await session.stop()

    assert isinstance(errors[0], EngineError)
    assert events[-1].is_final is True
    assert session.state == IDLE


@pytest.mark.asyncio
async def test_final_drain_failure_propagates_and_releases_buffer():
    session, events = _make_session(_ScriptedEngine(fail_all=True), buffer_duration_sec=10.0)

    await session.start()
    session.push(_silence(0.1))
    with pytest.raises(EngineError):
        await session.stop()

    assert events == []
    assert session.state == IDLE
    assert session.buffered_bytes == 0

    # 실패 후에도 다시 시작 가능
    await session.start()
    await session.stop()


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_flush():
    """진행 중인 partial flush가 끝난 뒤에 final이 발행되어야 합니다."""
    engine = _ScriptedEngine(delay_sec=0.2)
    session, events = _make_session(engine, buffer_duration_sec=0.05)

    await session.start()
    session.push(_silence(0.1))
    await _wait_until(engine.started.is_set)
    await session.stop()

    assert [e.is_final for e in events] == [False, True]
    assert events[0].text == "text0"
    assert len(engine.sample_counts) == 2


@pytest.mark.asyncio
async def test_handler_failure_is_isolated():
    session, events = _make_session(_ScriptedEngine())
    received: list[StreamingRecognitionEvent] = []

    def _broken_handler(event: StreamingRecognitionEvent) -> None:
        raise ValueError("handler bug")

    session.subscribe_final(_broken_handler)
    session.subscribe_final(received.append)

    await session.start()
    session.push(_silence(0.1))
    await session.stop()

    assert len(received) == 1
    assert len(events) == 1


@pytest.mark.asyncio
async def test_unsubscribe_removes_handler():
    session, events = _make_session(_ScriptedEngine())
    session.unsubscribe(events.append)

    await session.start()
    session.push(_silence(0.1))
    await session.stop()

    assert events == []


# =============================================================================
# 동시성 테스트
# =============================================================================

def _to_pcm_rows(samples: np.ndarray, row_size: int) -> np.ndarray:
    return np.round(samples * 32768.0).astype(np.int32).reshape(-1, row_size)


@pytest.mark.asyncio
async def test_concurrent_pushes_never_interleave_or_tear_blocks():
    """
    여러 스레드가 16샘플 균일 블록을 push하는 동안 주기 flush가 스냅샷을 떠도
    스냅샷과 최종 버퍼의 모든 16샘플 행이 하나의 블록 값으로만 채워져야 합니다.
    """
    thread_count, blocks_per_thread, block_samples = 4, 200, 16
    engine = _ScriptedEngine()
    session, _ = _make_session(engine, buffer_duration_sec=0.001, poll_interval_ms=1)
    push_errors: list[Exception] = []

    def _pusher(thread_index: int) -> None:
        try:
            for block_index in range(blocks_per_thread):
                value = thread_index * 1000 + block_index + 1
                session.push_pcm(np.full(block_samples, value, dtype="<i2").tobytes())
                time.sleep(0.0005)
        except Exception as exc:
            push_errors.append(exc)

    await session.start()
    threads = [threading.Thread(target=_pusher, args=(k,)) for k in range(thread_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        await asyncio.to_thread(thread.join)
    await session.stop()

    assert push_errors == []
    # 최소 한 번의 partial flush + final drain
    assert len(engine.snapshots) >= 2

    for snapshot in engine.snapshots:
        assert len(snapshot) % block_samples == 0
        rows = _to_pcm_rows(snapshot, block_samples)
        assert (rows == rows[:, :1]).all()

    final_rows = _to_pcm_rows(engine.snapshots[-1], block_samples)
    assert len(final_rows) == thread_count * blocks_per_thread

    block_values = final_rows[:, 0].tolist()
    assert sorted(block_values) == sorted(
        k * 1000 + i + 1 for k in range(thread_count) for i in range(blocks_per_thread)
    )
    # 스레드별 push 순서 유지
    for k in range(thread_count):
        own = [v for v in block_values if (v - 1) // 1000 == k]
        assert own == sorted(own)


# =============================================================================
# 해제(aclose) 테스트
# =============================================================================

@pytest.mark.asyncio
async def test_aclose_while_listening_drains_final_event():
    session, events = _make_session(_ScriptedEngine())

    async with session:
        await session.start()
        session.push(_silence(0.2))

    assert [e.is_final for e in events] == [True]
    assert session.closed


@pytest.mark.asyncio
async def test_calls_after_aclose_raise_lifecycle_error():
    session, _ = _make_session(_ScriptedEngine())
    await session.aclose()

    with pytest.raises(LifecycleError):
        await session.start()
    with pytest.raises(LifecycleError):
        session.push(_silence(0.1))
    with pytest.raises(LifecycleError):
        await session.stop()

    # aclose 중복 호출은 무시
    await session.aclose()
