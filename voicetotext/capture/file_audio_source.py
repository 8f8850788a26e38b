"""
파일 기반 오디오 소스 모듈입니다.

역할:
- 오디오 파일(WAV 등 soundfile 지원 포맷)을 읽어 표준 포맷(16kHz/16bit/mono)으로 정규화
- chunk_size_ms 단위 AudioChunk를 실시간 속도로 asyncio.Queue에 공급
- playback_speed 설정으로 재생 속도 제어
- 파일 끝에 도달하면 큐에 None(종료 신호)을 넣음

사용 예시:
    >>> source = FileAudioSource(config, "speech.wav")
    >>> await source.start()
    >>> chunk_count = await pump_to_session(source, session)
    >>> await source.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import soundfile as sf

from voicetotext.audio import (
    DEFAULT_BITS_PER_SAMPLE,
    DEFAULT_BLOCK_ALIGN,
    DEFAULT_SAMPLE_RATE,
    AudioChunk,
    AudioFormat,
)
from voicetotext.audio.normalizer import AudioNormalizer
from voicetotext.config.schema import AppConfig

if TYPE_CHECKING:
    from voicetotext.stt.streaming import StreamingSession

# 모듈 로거
logger = logging.getLogger(__name__)


class FileAudioSource:
    """
    오디오 파일을 실시간 스트리밍으로 시뮬레이션하는 오디오 소스입니다.

    오디오 생성 흐름:
        파일 로드(int16) → AudioNormalizer(16kHz mono) → chunk_size_ms 단위 분할
            → AudioChunk 생성 → audio_queue에 put → 마지막에 None put
    """

    def __init__(self, config: AppConfig, filepath: str | Path) -> None:
        """
        FileAudioSource를 초기화합니다.

        파라미터:
            config (AppConfig): 전체 애플리케이션 설정 객체
            filepath: 재생할 오디오 파일 경로
        """
        self._config = config
        self._filepath = Path(filepath)
        self._chunk_size_ms = config.capture.chunk_size_ms
        self._playback_speed = config.capture.playback_speed
        self._normalizer = AudioNormalizer()

        # 오디오 청크 큐 (None은 종료 신호)
        self._audio_queue: asyncio.Queue[Optional[AudioChunk]] = asyncio.Queue(
            maxsize=config.capture.queue_size
        )

        self._running: bool = False
        self._producer_task: Optional[asyncio.Task] = None

        logger.info(
            f"FileAudioSource 초기화 완료: "
            f"file={self._filepath}, "
            f"chunk={self._chunk_size_ms}ms, "
            f"playback_speed={self._playback_speed}x"
        )

    # =========================================================================
    # 공개 인터페이스
    # =========================================================================

    @property
    def format(self) -> AudioFormat:
        """출력 청크의 포맷 (항상 16kHz/16bit/mono)"""
        return AudioFormat.canonical()

    @property
    def is_capturing(self) -> bool:
        return self._running

    def get_audio_queue(self) -> asyncio.Queue[Optional[AudioChunk]]:
        """AudioChunk가 담기는 asyncio.Queue를 반환합니다. None은 종료 신호입니다."""
        return self._audio_queue

    async def start(self) -> None:
        """
        프로듀서 태스크를 시작합니다.

        이미 실행 중이면 경고 로그를 출력하고 반환합니다.

        에러:
            FileNotFoundError: 파일이 존재하지 않을 때
        """
        if self._running:
            logger.warning("FileAudioSource가 이미 실행 중입니다")
            return

        if not self._filepath.exists():
            raise FileNotFoundError(f"오디오 파일을 찾을 수 없습니다: {self._filepath}")

        self._running = True
        self._producer_task = asyncio.create_task(
            self._audio_producer(), name="file_audio_producer"
        )
        logger.info("FileAudioSource 시작: 오디오 프로듀서 태스크 실행")

    async def stop(self) -> None:
        """
        프로듀서 태스크를 취소하고 완료를 대기합니다.
        """
        if self._producer_task is None:
            return

        self._running = False
        task = self._producer_task
        self._producer_task = None

        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("FileAudioSource 중지 완료")

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    def _load_canonical_pcm(self) -> bytes:
        """파일을 int16으로 읽고 표준 포맷 PCM16 바이트로 변환합니다."""
        audio_data, file_sample_rate = sf.read(
            str(self._filepath), dtype="int16", always_2d=True
        )
        channels = audio_data.shape[1]
        source_format = AudioFormat(
            sample_rate=int(file_sample_rate),
            channels=channels,
            bits_per_sample=DEFAULT_BITS_PER_SAMPLE,
        )

        logger.info(
            f"오디오 파일 로드: {self._filepath}, "
            f"sample_rate={file_sample_rate}Hz, "
            f"channels={channels}, "
            f"total_frames={audio_data.shape[0]}"
        )
        return self._normalizer.normalize(
            audio_data.astype("<i2", copy=False).tobytes(), source_format
        )

    async def _audio_producer(self) -> None:
        """
        표준 포맷 PCM을 chunk_size_ms 단위 AudioChunk로 나누어 실시간 속도로 큐에 넣습니다.

        큐가 꽉 찬 경우 가장 오래된 청크를 제거 후 새 청크를 삽입합니다.
        파일 끝 또는 오류 시 None을 넣어 소비자에게 종료를 알립니다.
        """
        chunk_bytes = int(DEFAULT_SAMPLE_RATE * self._chunk_size_ms / 1000) * DEFAULT_BLOCK_ALIGN
        sleep_sec = (self._chunk_size_ms / 1000.0) / self._playback_speed
        chunk_id = 0

        try:
            pcm_data = await asyncio.to_thread(self._load_canonical_pcm)
            stream_start_ns = time.time_ns()

            for chunk_data in self._normalizer.split_chunks(pcm_data, chunk_bytes):
                if not self._running:
                    return

                # timestamp: 스트림 시작 시각 + 청크 시작 샘플의 실제 시각
                offset_samples = chunk_id * chunk_bytes // DEFAULT_BLOCK_ALIGN
                timestamp_ns = stream_start_ns + int(
                    offset_samples / DEFAULT_SAMPLE_RATE * 1_000_000_000
                )

                await _put_with_overflow_drop(
                    self._audio_queue,
                    AudioChunk(chunk_id=chunk_id, timestamp_ns=timestamp_ns, data=chunk_data),
                    f"오디오 청크 {chunk_id}",
                )
                chunk_id += 1

                if chunk_id % 100 == 0:
                    logger.debug(f"오디오 청크 {chunk_id}개 생성 완료")

                # 실시간 속도 시뮬레이션
                await asyncio.sleep(sleep_sec)

            logger.info(f"오디오 파일 재생 완료: {self._filepath}, 총 {chunk_id}개 청크 생성")

        except asyncio.CancelledError:
            raise

        except Exception as exc:
            logger.error(f"오디오 프로듀서 오류: {exc}", exc_info=True)

        finally:
            self._running = False
            await _put_with_overflow_drop(self._audio_queue, None, "종료 신호")


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

async def pump_to_session(source: FileAudioSource, session: "StreamingSession") -> int:
    """
    오디오 소스의 청크를 종료 신호(None)가 올 때까지 세션에 push합니다.

    파라미터:
        source: 오디오 소스 (start() 호출 후)
        session: listening 상태의 스트리밍 세션

    반환값:
        int: 전달한 청크 수
    """
    audio_queue = source.get_audio_queue()
    chunk_count = 0

    while True:
        chunk = await audio_queue.get()
        if chunk is None:
            break
        session.push_pcm(chunk.data)
        chunk_count += 1

    logger.debug(f"세션으로 {chunk_count}개 청크 전달 완료")
    return chunk_count


async def _put_with_overflow_drop(
    queue: asyncio.Queue,
    item: object,
    item_name: str,
) -> None:
    """
    큐가 꽉 찬 경우 가장 오래된 항목을 제거하고 새 항목을 삽입합니다.

    파라미터:
        queue: 대상 asyncio.Queue
        item: 삽입할 항목
        item_name: 로그 출력용 항목 이름
    """
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        await queue.put(item)
        logger.warning(f"큐 오버플로우: {item_name} 삽입을 위해 오래된 항목 제거")
