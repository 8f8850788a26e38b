"""
전사 엔진 계약 및 엔진 핸들 캐시 모듈입니다.

역할:
- TranscriptionEngine 프로토콜 정의 (float32 mono 16kHz 샘플 → 세그먼트 시퀀스)
- 모델 경로별 엔진 인스턴스를 최초 사용 시 생성하고 재사용하는 EngineCache
- 엔진 예외를 EngineError로 감싸는 세그먼트 반복자
- faster-whisper 기반 FasterWhisperEngine 어댑터

스레드 안전성:
- EngineCache의 생성/해제는 내부 락으로 직렬화됩니다.
- 생성된 엔진 인스턴스의 동시 호출 안전성은 엔진 구현의 책임입니다.

사용 예시:
    >>> cache = EngineCache(FasterWhisperEngine.loader(config.engine))
    >>> handle = cache.acquire("base")
    >>> for segment in iterate_segments(handle.get(), samples, RecognizerOptions()):
    ...     print(segment.text)
    >>> handle.release()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Optional, Protocol

import numpy as np

from voicetotext.errors import EngineError, LifecycleError
from voicetotext.stt import RecognizerOptions, TranscriptionSegment

if TYPE_CHECKING:
    from voicetotext.config.schema import EngineConfig

logger = logging.getLogger(__name__)


class TranscriptionEngine(Protocol):
    """
    전사 엔진 계약입니다.

    samples는 -1.0~+1.0 범위 float32, mono, 16kHz 샘플입니다.
    반환되는 세그먼트는 start 기준 단조 비감소 순서여야 하며,
    지연(lazy) 생성이어도 됩니다. 엔진은 호출 간 상태를 유지하지 않습니다.
    """

    def transcribe(
        self, samples: np.ndarray, options: RecognizerOptions
    ) -> Iterable[TranscriptionSegment]:
        ...


# 모델 경로를 받아 엔진을 생성하는 팩토리 타입
EngineLoader = Callable[[str], TranscriptionEngine]


def iterate_segments(
    engine: TranscriptionEngine,
    samples: np.ndarray,
    options: RecognizerOptions,
) -> Iterator[TranscriptionSegment]:
    """
    엔진이 생성하는 세그먼트를 순서대로 반환하는 반복자입니다.

    엔진 호출 또는 반복 중 발생한 예외는 EngineError로 감싸서 전파합니다.

    파라미터:
        engine: 전사 엔진
        samples: float32 mono 16kHz 샘플
        options: 인식 옵션

    에러:
        EngineError: 엔진 호출 실패 시
    """
    try:
        for segment in engine.transcribe(samples, options):
            yield segment
    except EngineError:
        raise
    except Exception as exc:
        raise EngineError(f"전사 엔진 호출 실패: {exc}") from exc


# =============================================================================
# 엔진 핸들 캐시
# =============================================================================

@dataclass
class _CacheEntry:
    engine: Optional[TranscriptionEngine]
    ref_count: int


class EngineHandle:
    """
    EngineCache에서 획득한 엔진 참조입니다.

    get() 최초 호출 시 엔진이 생성되고, release() 호출 시 참조가 반환됩니다.
    마지막 참조가 반환되면 캐시가 엔진을 닫습니다.
    """

    def __init__(self, cache: "EngineCache", model_path: str) -> None:
        self._cache = cache
        self._model_path = model_path
        self._released = False

    @property
    def model_path(self) -> str:
        return self._model_path

    @property
    def released(self) -> bool:
        return self._released

    def get(self) -> TranscriptionEngine:
        """
        엔진 인스턴스를 반환합니다 (필요 시 생성).

        에러:
            LifecycleError: 이미 release()된 핸들일 때
            EngineError: 엔진 생성 실패 시
        """
        if self._released:
            raise LifecycleError(f"이미 해제된 엔진 핸들입니다: {self._model_path}")
        return self._cache._get_engine(self._model_path)

    def release(self) -> None:
        """참조를 반환합니다. 여러 번 호출해도 한 번만 반영됩니다."""
        if self._released:
            return
        self._released = True
        self._cache._release(self._model_path)


class EngineCache:
    """
    모델 경로별로 엔진 인스턴스를 지연 생성하고 참조 카운트로 수명을 관리하는 캐시입니다.

    동작:
    - acquire(model_path): 참조 카운트 증가, EngineHandle 반환 (엔진 생성 안 함)
    - EngineHandle.get(): 최초 호출 시 loader(model_path)로 생성, 이후 동일 인스턴스 반환
    - EngineHandle.release(): 참조 카운트 감소, 0이 되면 엔진 close() 호출 후 제거
    """

    def __init__(self, loader: EngineLoader) -> None:
        """
        EngineCache를 초기화합니다.

        파라미터:
            loader: 모델 경로를 받아 엔진을 생성하는 팩토리
        """
        self._loader = loader
        self._lock = threading.Lock()
        self._entries: dict[str, _CacheEntry] = {}

    def acquire(self, model_path: str) -> EngineHandle:
        """
        모델 경로에 대한 엔진 핸들을 획득합니다.

        파라미터:
            model_path: 모델 파일 경로 또는 모델 이름

        반환값:
            EngineHandle: 지연 생성 엔진 핸들
        """
        with self._lock:
            entry = self._entries.setdefault(model_path, _CacheEntry(engine=None, ref_count=0))
            entry.ref_count += 1
            logger.debug(f"엔진 핸들 획득: {model_path} (참조 {entry.ref_count}개)")
        return EngineHandle(self, model_path)

    def is_loaded(self, model_path: str) -> bool:
        """해당 모델의 엔진이 이미 생성되었는지 반환합니다."""
        with self._lock:
            entry = self._entries.get(model_path)
            return entry is not None and entry.engine is not None

    def clear(self) -> None:
        """참조 카운트와 무관하게 모든 엔진을 닫고 캐시를 비웁니다."""
        with self._lock:
            entries = list(self._entries.items())
            self._entries.clear()
        for model_path, entry in entries:
            if entry.engine is not None:
                _close_engine(model_path, entry.engine)

    # =========================================================================
    # 내부 메서드 (EngineHandle 전용)
    # =========================================================================

    def _get_engine(self, model_path: str) -> TranscriptionEngine:
        with self._lock:
            entry = self._entries.get(model_path)
            if entry is None:
                raise LifecycleError(f"캐시에서 제거된 엔진입니다: {model_path}")

            if entry.engine is None:
                logger.info(f"전사 엔진 로드: {model_path}")
                try:
                    entry.engine = self._loader(model_path)
                except Exception as exc:
                    raise EngineError(f"전사 엔진 생성 실패 ({model_path}): {exc}") from exc

            return entry.engine

    def _release(self, model_path: str) -> None:
        engine_to_close: Optional[TranscriptionEngine] = None
        with self._lock:
            entry = self._entries.get(model_path)
            if entry is None:
                return
            entry.ref_count -= 1
            if entry.ref_count <= 0:
                del self._entries[model_path]
                engine_to_close = entry.engine

        if engine_to_close is not None:
            _close_engine(model_path, engine_to_close)


def _close_engine(model_path: str, engine: Any) -> None:
    """close()가 있는 엔진이면 호출합니다. 실패는 로그만 남깁니다."""
    close = getattr(engine, "close", None)
    if close is None:
        return
    try:
        close()
        logger.info(f"전사 엔진 해제: {model_path}")
    except Exception as exc:
        logger.error(f"전사 엔진 해제 실패 ({model_path}): {exc}", exc_info=True)


# =============================================================================
# faster-whisper 어댑터
# =============================================================================

class FasterWhisperEngine:
    """
    faster-whisper WhisperModel을 TranscriptionEngine 계약에 맞춘 어댑터입니다.

    faster-whisper는 선택 의존성이므로 생성 시점에 임포트합니다.
    세그먼트는 faster-whisper가 생성하는 대로 지연 반환됩니다.
    """

    def __init__(
        self,
        model_path: str,
        device: str = "cpu",
        compute_type: str = "int8",
        threads: int = 0,
        translate: bool = False,
    ) -> None:
        """
        WhisperModel을 로드합니다.

        파라미터:
            model_path: 모델 이름(예: "base") 또는 CTranslate2 모델 디렉토리
            device: 추론 장치 ("cpu" | "cuda" | "auto")
            compute_type: 양자화 타입 (예: "int8", "float16")
            threads: CPU 스레드 수 (0 = 자동)
            translate: True이면 영어 번역 모드로 동작
        """
        from faster_whisper import WhisperModel

        self._model_path = model_path
        self._translate = translate

        model_kwargs: dict[str, Any] = {"device": device, "compute_type": compute_type}
        if threads > 0:
            model_kwargs["cpu_threads"] = threads

        logger.info(
            f"faster-whisper 모델 로드: {model_path} "
            f"(device={device}, compute_type={compute_type}, threads={threads or 'auto'})"
        )
        self._model: Optional[Any] = WhisperModel(model_path, **model_kwargs)

    @classmethod
    def loader(cls, engine_config: "EngineConfig") -> EngineLoader:
        """EngineConfig 설정으로 엔진을 생성하는 EngineCache용 loader를 반환합니다."""

        def _load(model_path: str) -> TranscriptionEngine:
            return cls(
                model_path,
                device=engine_config.device,
                compute_type=engine_config.compute_type,
                threads=engine_config.threads,
                translate=engine_config.translate,
            )

        return _load

    def transcribe(
        self, samples: np.ndarray, options: RecognizerOptions
    ) -> Iterator[TranscriptionSegment]:
        """
        샘플을 전사하여 세그먼트를 순서대로 반환합니다.

        confidence는 1 - no_speech_prob으로 계산합니다.
        """
        if self._model is None:
            raise LifecycleError(f"이미 해제된 엔진입니다: {self._model_path}")

        transcribe_kwargs: dict[str, Any] = {
            "language": None if options.detect_language else options.language,
            "word_timestamps": options.word_timestamps,
        }
        if options.prompt:
            transcribe_kwargs["initial_prompt"] = options.prompt
        if self._translate:
            transcribe_kwargs["task"] = "translate"

        segments, info = self._model.transcribe(
            np.asarray(samples, dtype=np.float32), **transcribe_kwargs
        )
        logger.debug(
            f"faster-whisper 전사 시작: language={getattr(info, 'language', None)}, "
            f"duration={getattr(info, 'duration', 0.0):.2f}s"
        )

        for segment in segments:
            no_speech_prob = float(getattr(segment, "no_speech_prob", 0.0) or 0.0)
            yield TranscriptionSegment(
                text=segment.text,
                start=float(segment.start),
                end=float(segment.end),
                confidence=min(1.0, max(0.0, 1.0 - no_speech_prob)),
            )

    def close(self) -> None:
        """모델 참조를 해제합니다."""
        self._model = None
