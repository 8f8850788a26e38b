"""
스트리밍 인식 세션 모듈입니다.

역할:
- push()로 들어오는 PCM16/float 오디오를 세션 버퍼에 누적
- 주기적으로(기본 500ms) 버퍼 길이를 검사하여 임계값 이상이면
  세션 시작부터 누적된 전체 오디오를 재전사하고 partial 이벤트 발행
- stop() 시 진행 중인 주기 작업이 끝나기를 기다린 뒤
  남은 버퍼 전체를 마지막으로 전사하여 final 이벤트 발행

상태 전이:
    idle --start()--> listening --stop()--> idle

동시성:
- 버퍼는 threading.Lock으로 보호되며, push와 flush 스냅샷은 서로 배타적입니다.
- 엔진 호출은 asyncio.to_thread로 워커 스레드에서 실행됩니다.
- 주기 작업은 단일 태스크 안에서 순차 실행되므로 flush가 겹치지 않습니다.
- stop()은 다음 대기(sleep)만 중단시키고, 진행 중인 flush는 끝까지 실행됩니다.

이벤트 전달:
- subscribe_partial / subscribe_final / subscribe_error 로 등록한 핸들러를
  발행 순서대로 동기 호출 (핸들러 하나의 실패가 다른 핸들러에 영향 없음)
- 모든 이벤트는 get_result_queue()의 asyncio.Queue에도 순서대로 추가되며,
  aclose() 시 None을 넣어 종료를 알립니다.

사용 예시:
    >>> async with StreamingSession(config, cache) as session:
    ...     session.subscribe_final(lambda event: print(event.text))
    ...     await session.start()
    ...     session.push(pcm_bytes)
    ...     await session.stop()
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional, Sequence, Union

import numpy as np

from voicetotext.audio.converter import float_to_pcm16, pcm16_to_float
from voicetotext.config.schema import AppConfig
from voicetotext.errors import FormatError, LifecycleError, StateError
from voicetotext.stt import (
    RecognizerOptions,
    StreamingRecognitionEvent,
    TranscriptionResult,
    TranscriptionSegment,
)
from voicetotext.stt.engine import EngineCache, iterate_segments

logger = logging.getLogger(__name__)

# 세션 상태
IDLE = "idle"
LISTENING = "listening"

# 이벤트 핸들러 타입
EventHandler = Callable[[StreamingRecognitionEvent], None]
ErrorHandler = Callable[[Exception], None]

AudioInput = Union[bytes, bytearray, memoryview, np.ndarray, Sequence[float]]


class StreamingSession:
    """
    누적 버퍼 재전사 방식으로 실시간 인식을 흉내내는 스트리밍 세션입니다.

    전사 엔진은 증분(stateful) 모드가 없으므로, 매 주기마다 세션 시작부터
    누적된 오디오 전체를 다시 전사합니다. 버퍼는 stop() 전까지 비워지지 않습니다.
    """

    def __init__(self, config: AppConfig, engine_cache: EngineCache) -> None:
        """
        StreamingSession을 초기화합니다.

        파라미터:
            config: 전체 애플리케이션 설정 (streaming, recognizer, engine 섹션 사용)
            engine_cache: 엔진 캐시 (model_path 기준으로 공유)
        """
        self._config = config
        self._engine_handle = engine_cache.acquire(config.engine.model_path)

        # partial 재전사 임계값 (bytes)
        self._threshold_bytes: int = config.streaming.threshold_bytes
        # 버퍼 검사 주기 (초)
        self._poll_interval_sec: float = config.streaming.poll_interval_ms / 1000.0

        # 세션 버퍼 (start 시 생성, stop 시 해제)
        self._buffer: Optional[bytearray] = None
        self._buffer_lock = threading.Lock()

        self._state: str = IDLE
        self._closed: bool = False
        self._options: Optional[RecognizerOptions] = None

        # 주기 작업 태스크와 중단 신호
        self._poll_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        # 이벤트 구독자 목록
        self._partial_handlers: list[EventHandler] = []
        self._final_handlers: list[EventHandler] = []
        self._error_handlers: list[ErrorHandler] = []

        # 결과 이벤트 큐 (None은 세션 종료 신호)
        self._result_queue: asyncio.Queue[Optional[StreamingRecognitionEvent]] = asyncio.Queue(
            maxsize=config.streaming.result_queue_size
        )

        logger.info(
            f"StreamingSession 초기화: model={config.engine.model_path}, "
            f"buffer={config.streaming.buffer_duration_sec}s "
            f"({self._threshold_bytes} bytes), "
            f"poll={config.streaming.poll_interval_ms}ms"
        )

    # =========================================================================
    # 상태 조회
    # =========================================================================

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == LISTENING

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def threshold_bytes(self) -> int:
        return self._threshold_bytes

    @property
    def buffered_bytes(self) -> int:
        """현재 버퍼에 누적된 바이트 수 (버퍼가 없으면 0)"""
        with self._buffer_lock:
            return len(self._buffer) if self._buffer is not None else 0

    def get_result_queue(self) -> asyncio.Queue[Optional[StreamingRecognitionEvent]]:
        """StreamingRecognitionEvent가 담기는 asyncio.Queue를 반환합니다. None은 종료 신호입니다."""
        return self._result_queue

    # =========================================================================
    # 구독
    # =========================================================================

    def subscribe_partial(self, handler: EventHandler) -> None:
        """partial 결과 핸들러를 등록합니다."""
        self._partial_handlers.append(handler)

    def subscribe_final(self, handler: EventHandler) -> None:
        """final 결과 핸들러를 등록합니다."""
        self._final_handlers.append(handler)

    def subscribe_error(self, handler: ErrorHandler) -> None:
        """주기 flush 중 발생한 엔진 에러 핸들러를 등록합니다."""
        self._error_handlers.append(handler)

    def unsubscribe(self, handler: Callable) -> None:
        """모든 채널에서 핸들러를 제거합니다. 등록되지 않은 핸들러는 무시합니다."""
        removed = False
        for handlers in (self._partial_handlers, self._final_handlers, self._error_handlers):
            if handler in handlers:
                handlers.remove(handler)
                removed = True
        if not removed:
            logger.warning("제거할 핸들러를 찾을 수 없습니다")

    # =========================================================================
    # 세션 제어
    # =========================================================================

    async def start(self, options: Optional[RecognizerOptions] = None) -> None:
        """
        세션을 시작합니다.

        빈 버퍼를 만들고 listening 상태로 전이한 뒤 주기 작업 태스크를 실행합니다.

        파라미터:
            options: 인식 옵션 (None이면 config.recognizer 기본값)

        에러:
            StateError: 이미 listening 상태일 때
            LifecycleError: aclose() 이후 호출 시
        """
        self._ensure_open()
        if self._state == LISTENING:
            raise StateError("이미 listening 상태입니다. stop() 후 다시 시작하세요.")

        self._options = options if options is not None else self._config.recognizer.to_options()

        with self._buffer_lock:
            self._buffer = bytearray()
            self._state = LISTENING

        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="streaming_poll_loop")

        logger.info(f"스트리밍 세션 시작: language={self._options.language}")

    def push_pcm(self, data: Union[bytes, bytearray, memoryview]) -> None:
        """
        16kHz/16bit/mono PCM 바이트를 버퍼에 추가합니다.

        에러:
            StateError: listening 상태가 아닐 때
            FormatError: 길이가 16bit 샘플 단위(짝수)가 아닐 때
            LifecycleError: aclose() 이후 호출 시
        """
        self._ensure_open()
        with self._buffer_lock:
            if self._state != LISTENING or self._buffer is None:
                raise StateError("listening 상태가 아닙니다. start()를 먼저 호출하세요.")
            if len(data) % 2 != 0:
                raise FormatError(f"PCM16 데이터 길이는 짝수여야 합니다: {len(data)} bytes")
            self._buffer.extend(data)

    def push_float(self, samples: Union[np.ndarray, Sequence[float]]) -> None:
        """
        -1.0~+1.0 범위 float 샘플(16kHz mono)을 PCM16으로 변환하여 버퍼에 추가합니다.

        에러:
            StateError: listening 상태가 아닐 때
            FormatError: 부동소수점이 아닌 numpy 배열일 때
        """
        self._ensure_open()
        if self._state != LISTENING:
            raise StateError("listening 상태가 아닙니다. start()를 먼저 호출하세요.")
        if isinstance(samples, np.ndarray) and samples.dtype.kind != "f":
            raise FormatError(
                f"push_float()는 float 배열만 받습니다: dtype={samples.dtype}. "
                "int16 PCM은 push() 또는 push_pcm()을 사용하세요."
            )
        self.push_pcm(float_to_pcm16(samples))

    def push(self, audio: AudioInput) -> None:
        """
        입력 타입에 따라 버퍼에 추가합니다.

        - bytes/bytearray/memoryview, int16 numpy 배열 → push_pcm
        - float numpy 배열, float 시퀀스 → push_float
        - 그 외 정수 dtype 배열 → FormatError
        """
        if isinstance(audio, (bytes, bytearray, memoryview)):
            self.push_pcm(audio)
        elif isinstance(audio, np.ndarray) and audio.dtype.kind == "i" and audio.dtype.itemsize == 2:
            self.push_pcm(audio.astype("<i2", copy=False).tobytes())
        else:
            self.push_float(audio)

    async def stop(self) -> None:
        """
        세션을 종료합니다.

        처리 순서:
        1. listening 해제 (이후 push는 StateError)
        2. 주기 작업 중단 신호 후, 진행 중인 flush까지 끝나기를 대기
        3. 누적 버퍼 전체를 전사하여 텍스트가 있으면 final 이벤트 발행
        4. 버퍼 해제 후 idle 상태로 전이 (3에서 에러가 나도 수행)

        idle 상태에서 호출하면 아무 일도 하지 않습니다.

        에러:
            EngineError: 마지막 전사(drain) 실패 시
            LifecycleError: aclose() 이후 호출 시
        """
        self._ensure_open()
        if self._state != LISTENING:
            logger.debug("idle 상태에서 stop() 호출: 무시")
            return

        logger.info("스트리밍 세션 중지 시작")

        with self._buffer_lock:
            self._state = IDLE

        try:
            await self._stop_poll_task()

            snapshot = self._take_snapshot()
            if snapshot:
                segments = await asyncio.to_thread(self._transcribe_snapshot, snapshot)
                final_text = TranscriptionResult.from_segments(segments).text
                if final_text:
                    self._emit(StreamingRecognitionEvent(text=final_text, is_final=True))
            else:
                logger.debug("버퍼가 비어있어 final 전사 생략")

        finally:
            with self._buffer_lock:
                self._buffer = None
            self._poll_task = None
            self._stop_event = None
            logger.info("스트리밍 세션 중지 완료")

    async def aclose(self) -> None:
        """
        세션을 해제합니다.

        listening 상태이면 stop()과 동일한 drain을 먼저 수행하여 이벤트 유실을 막습니다.
        엔진 핸들을 반환하고 result_queue에 종료 신호(None)를 넣습니다.
        이후 모든 호출은 LifecycleError가 발생합니다.
        """
        if self._closed:
            return

        try:
            if self._state == LISTENING:
                await self.stop()
        finally:
            self._closed = True
            self._engine_handle.release()
            self._put_result(None)
            logger.debug("StreamingSession 해제 완료")

    async def __aenter__(self) -> "StreamingSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise LifecycleError("이미 해제된 StreamingSession입니다")

    async def _poll_loop(self) -> None:
        """
        poll 주기마다 버퍼 길이를 검사하고 임계값 이상이면 partial 전사를 수행하는 루프입니다.

        중단 신호는 대기 중에만 확인하므로 진행 중인 flush는 끝까지 실행됩니다.
        flush 실패는 에러 채널로 보고하고 다음 주기에 다시 시도합니다.
        """
        stop_event = self._stop_event
        logger.debug("주기 flush 루프 시작")

        while stop_event is not None and not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval_sec)
                break
            except asyncio.TimeoutError:
                pass

            if self.buffered_bytes < self._threshold_bytes:
                continue

            snapshot = self._take_snapshot()
            if not snapshot:
                continue

            try:
                segments = await asyncio.to_thread(self._transcribe_snapshot, snapshot)
            except Exception as exc:
                logger.error(f"partial 전사 실패 (다음 주기에 재시도): {exc}", exc_info=True)
                self._notify_errors(exc)
                continue

            partial_text = _last_non_empty_text(segments)
            if partial_text:
                self._emit(StreamingRecognitionEvent(text=partial_text, is_final=False))

        logger.debug("주기 flush 루프 종료")

    async def _stop_poll_task(self) -> None:
        """중단 신호를 보내고 주기 작업 태스크가 끝날 때까지 기다립니다."""
        if self._stop_event is not None:
            self._stop_event.set()

        task = self._poll_task
        if task is None:
            return

        if not task.done():
            await asyncio.wait([task])

        if task.cancelled():
            logger.debug("주기 flush 태스크가 외부에서 취소됨")
        elif task.exception() is not None:
            logger.error(
                f"주기 flush 태스크 비정상 종료: {task.exception()}",
                exc_info=task.exception(),
            )

    def _take_snapshot(self) -> bytes:
        """버퍼를 비우지 않고 현재까지의 내용을 복사합니다."""
        with self._buffer_lock:
            return bytes(self._buffer) if self._buffer is not None else b""

    def _transcribe_snapshot(self, snapshot: bytes) -> list[TranscriptionSegment]:
        """워커 스레드에서 실행: PCM16 스냅샷을 전사합니다."""
        samples = pcm16_to_float(snapshot)
        engine = self._engine_handle.get()
        options = self._options or self._config.recognizer.to_options()
        logger.debug(f"버퍼 전사: {len(snapshot)} bytes ({len(samples)} samples)")
        return list(iterate_segments(engine, samples, options))

    def _emit(self, event: StreamingRecognitionEvent) -> None:
        """이벤트를 결과 큐에 넣고 해당 채널 구독자에게 순서대로 전달합니다."""
        kind = "final" if event.is_final else "partial"
        logger.debug(f"{kind} 이벤트 발행: '{event.text[:30]}'")

        self._put_result(event)
        handlers = self._final_handlers if event.is_final else self._partial_handlers
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as callback_error:
                logger.error(f"{kind} 핸들러 실행 중 에러: {callback_error}", exc_info=True)

    def _notify_errors(self, error: Exception) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception as callback_error:
                logger.error(f"에러 핸들러 실행 중 에러: {callback_error}", exc_info=True)

    def _put_result(self, item: Optional[StreamingRecognitionEvent]) -> None:
        """결과 큐가 꽉 찬 경우 가장 오래된 항목을 제거하고 삽입합니다."""
        try:
            self._result_queue.put_nowait(item)
        except asyncio.QueueFull:
            try:
                self._result_queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self._result_queue.put_nowait(item)
            logger.warning("결과 큐 오버플로우: 오래된 이벤트 제거")


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _last_non_empty_text(segments: Sequence[TranscriptionSegment]) -> str:
    """마지막 비어있지 않은 세그먼트 텍스트(trim)를 반환합니다."""
    for segment in reversed(segments):
        text = segment.text.strip()
        if text:
            return text
    return ""
