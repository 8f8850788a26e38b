"""
배치 전사 오케스트레이터 모듈입니다.

역할:
- 완성된 WAV 컨테이너를 읽어 표준 포맷(16kHz mono float32)으로 정규화
- 전사 엔진을 한 번 호출하여 세그먼트를 수집하고 TranscriptionResult로 조립
- 세그먼트를 엔진이 생성하는 순서 그대로 하나씩 반환하는 스트리밍 변형 제공

엔진 호출(모델 로드 포함)은 asyncio.to_thread로 워커 스레드에서 실행되어
이벤트 루프를 차단하지 않습니다.

사용 예시:
    >>> cache = EngineCache(FasterWhisperEngine.loader(config.engine))
    >>> async with BatchTranscriber(config, cache) as transcriber:
    ...     result = await transcriber.transcribe_file("speech.wav")
    ...     print(result.text)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Iterator, Optional

import numpy as np

from voicetotext.audio.normalizer import AudioNormalizer
from voicetotext.audio.wav_reader import read_wav
from voicetotext.config.schema import AppConfig
from voicetotext.errors import LifecycleError
from voicetotext.stt import RecognizerOptions, TranscriptionResult, TranscriptionSegment
from voicetotext.stt.engine import EngineCache, iterate_segments

logger = logging.getLogger(__name__)

# 세그먼트 반복 종료 표시
_END_OF_SEGMENTS = object()


class BatchTranscriber:
    """
    WAV 컨테이너 단위의 일괄 전사를 수행하는 클래스입니다.

    처리 흐름:
        WAV 스트림 → read_wav → AudioNormalizer.to_samples (mixdown/resample/float)
            → TranscriptionEngine.transcribe → TranscriptionResult
    """

    def __init__(self, config: AppConfig, engine_cache: EngineCache) -> None:
        """
        BatchTranscriber를 초기화합니다.

        엔진 핸들만 획득하며, 실제 엔진은 첫 전사 요청 시 생성됩니다.

        파라미터:
            config: 전체 애플리케이션 설정
            engine_cache: 엔진 캐시 (model_path 기준으로 공유)
        """
        self._config = config
        self._normalizer = AudioNormalizer()
        self._engine_handle = engine_cache.acquire(config.engine.model_path)
        self._closed = False

        logger.debug(f"BatchTranscriber 초기화: model={config.engine.model_path}")

    # =========================================================================
    # 공개 메서드
    # =========================================================================

    async def transcribe(
        self,
        stream: BinaryIO,
        options: Optional[RecognizerOptions] = None,
    ) -> TranscriptionResult:
        """
        WAV 스트림 전체를 전사하여 결과를 반환합니다.

        파라미터:
            stream: RIFF/WAVE 바이너리 스트림
            options: 인식 옵션 (None이면 config.recognizer 기본값)

        반환값:
            TranscriptionResult: 세그먼트 목록, 이어붙인 텍스트, 길이(초)

        에러:
            FormatError: WAV 파싱 실패 또는 16bit PCM이 아닐 때
            EngineError: 엔진 생성/호출 실패 시
            LifecycleError: close() 이후 호출 시
        """
        self._ensure_open()
        request_options = self._resolve_options(options)

        samples = await asyncio.to_thread(self._prepare_samples, stream)
        segments = await asyncio.to_thread(self._run_engine, samples, request_options)

        result = TranscriptionResult.from_segments(segments)
        logger.info(
            f"배치 전사 완료: segments={len(result.segments)}, "
            f"duration={result.duration:.2f}s, text_len={len(result.text)}"
        )
        return result

    async def transcribe_segments(
        self,
        stream: BinaryIO,
        options: Optional[RecognizerOptions] = None,
    ) -> AsyncIterator[TranscriptionSegment]:
        """
        WAV 스트림을 전사하면서 세그먼트를 생성되는 순서대로 반환합니다.

        엔진의 세그먼트 순서를 그대로 유지하며, 세그먼트 하나를 받을 때마다
        워커 스레드에서 다음 세그먼트를 요청합니다.

        에러:
            FormatError, EngineError, LifecycleError: transcribe()와 동일
        """
        self._ensure_open()
        request_options = self._resolve_options(options)

        samples = await asyncio.to_thread(self._prepare_samples, stream)
        engine = await asyncio.to_thread(self._engine_handle.get)
        segment_iterator = iterate_segments(engine, samples, request_options)

        segment_count = 0
        while True:
            segment = await asyncio.to_thread(next, segment_iterator, _END_OF_SEGMENTS)
            if segment is _END_OF_SEGMENTS:
                break
            segment_count += 1
            yield segment

        logger.debug(f"세그먼트 스트리밍 완료: {segment_count}개")

    async def transcribe_file(
        self,
        filepath: str | Path,
        options: Optional[RecognizerOptions] = None,
    ) -> TranscriptionResult:
        """
        WAV 파일 경로를 받아 전사합니다.

        에러:
            FileNotFoundError: 파일이 존재하지 않을 때
        """
        logger.info(f"WAV 파일 전사 시작: {filepath}")
        with open(filepath, "rb") as wav_file:
            return await self.transcribe(wav_file, options)

    def close(self) -> None:
        """엔진 핸들을 반환합니다. 이후 전사 호출은 LifecycleError가 발생합니다."""
        if self._closed:
            return
        self._closed = True
        self._engine_handle.release()
        logger.debug("BatchTranscriber 종료")

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "BatchTranscriber":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    def _ensure_open(self) -> None:
        if self._closed:
            raise LifecycleError("이미 종료된 BatchTranscriber입니다")

    def _resolve_options(self, options: Optional[RecognizerOptions]) -> RecognizerOptions:
        if options is not None:
            return options
        return self._config.recognizer.to_options()

    def _prepare_samples(self, stream: BinaryIO) -> np.ndarray:
        """WAV를 파싱하고 표준 포맷 float32 샘플로 변환합니다."""
        wav = read_wav(stream)
        samples = self._normalizer.to_samples(wav.pcm_data, wav.format)
        logger.debug(
            f"입력 정규화: {wav.sample_rate}Hz/{wav.channels}ch "
            f"→ {self._normalizer.target_sample_rate}Hz/mono, samples={len(samples)}"
        )
        return samples

    def _run_engine(
        self, samples: np.ndarray, options: RecognizerOptions
    ) -> list[TranscriptionSegment]:
        engine = self._engine_handle.get()
        segments: Iterator[TranscriptionSegment] = iterate_segments(engine, samples, options)
        return list(segments)
