"""
전사 엔진 캐시 / faster-whisper 어댑터 단위 테스트

검증 항목:
- EngineCache: 지연 생성, 동일 인스턴스 재사용, 참조 카운트 기반 해제
- EngineHandle: release 이후 get() LifecycleError, release 중복 호출 무시
- 엔진 생성/반복 실패 시 EngineError 래핑
- FasterWhisperEngine: 옵션 매핑, confidence 계산 (faster_whisper 모듈은 mock)
"""

from __future__ import annotations

import sys
import types
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from voicetotext.config.schema import EngineConfig
from voicetotext.errors import EngineError, LifecycleError
from voicetotext.stt import RecognizerOptions, TranscriptionSegment
from voicetotext.stt.engine import EngineCache, FasterWhisperEngine, iterate_segments


# =============================================================================
# 테스트 헬퍼
# =============================================================================

class _FakeEngine:
    def __init__(self, model_path: str) -> None:
        self.model_path = model_path
        self.closed = False

    def transcribe(self, samples, options):
        yield TranscriptionSegment(text="hello", start=0.0, end=1.0)

    def close(self) -> None:
        self.closed = True


def _make_cache():
    created: list[_FakeEngine] = []

    def _loader(model_path: str) -> _FakeEngine:
        engine = _FakeEngine(model_path)
        created.append(engine)
        return engine

    return EngineCache(_loader), created


# =============================================================================
# EngineCache 테스트
# =============================================================================

def test_acquire_does_not_construct_engine():
    cache, created = _make_cache()
    cache.acquire("base")
    assert created == []
    assert not cache.is_loaded("base")


def test_engine_constructed_once_and_shared():
    cache, created = _make_cache()
    first = cache.acquire("base")
    second = cache.acquire("base")

    assert first.get() is second.get()
    assert len(created) == 1
    assert cache.is_loaded("base")


def test_different_model_paths_get_different_engines():
    cache, created = _make_cache()
    assert cache.acquire("base").get() is not cache.acquire("small").get()
    assert [e.model_path for e in created] == ["base", "small"]


def test_engine_closed_when_last_handle_released():
    cache, created = _make_cache()
    first = cache.acquire("base")
    second = cache.acquire("base")
    engine = first.get()

    first.release()
    assert not engine.closed

    second.release()
    assert engine.closed
    assert not cache.is_loaded("base")


def test_release_is_idempotent():
    cache, created = _make_cache()
    first = cache.acquire("base")
    second = cache.acquire("base")
    engine = second.get()

    first.release()
    first.release()

    assert not engine.closed
    assert first.released


def test_get_after_release_raises():
    cache, _ = _make_cache()
    handle = cache.acquire("base")
    handle.release()
    with pytest.raises(LifecycleError):
        handle.get()


def test_loader_failure_wrapped_in_engine_error():
    def _broken_loader(model_path: str):
        raise OSError("model file not found")

    handle = EngineCache(_broken_loader).acquire("missing")
    with pytest.raises(EngineError) as exc_info:
        handle.get()
    assert isinstance(exc_info.value.__cause__, OSError)


def test_clear_closes_all_engines():
    cache, created = _make_cache()
    cache.acquire("base").get()
    cache.acquire("small").get()

    cache.clear()

    assert all(engine.closed for engine in created)


# =============================================================================
# iterate_segments 테스트
# =============================================================================

def test_iterate_segments_wraps_engine_exception():
    class _FailingEngine:
        def transcribe(self, samples, options):
            yield TranscriptionSegment(text="ok", start=0.0, end=0.5)
            raise RuntimeError("inference crashed")

    iterator = iterate_segments(_FailingEngine(), np.zeros(10, dtype=np.float32), RecognizerOptions())

    assert next(iterator).text == "ok"
    with pytest.raises(EngineError):
        next(iterator)


def test_iterate_segments_passes_engine_error_through():
    original = EngineError("already wrapped")

    class _Engine:
        def transcribe(self, samples, options):
            raise original

    with pytest.raises(EngineError) as exc_info:
        list(iterate_segments(_Engine(), np.zeros(1, dtype=np.float32), RecognizerOptions()))
    assert exc_info.value is original


# =============================================================================
# FasterWhisperEngine 테스트 (faster_whisper mock)
# =============================================================================

def _fake_faster_whisper(segments):
    """WhisperModel을 MagicMock으로 대체한 faster_whisper 모듈을 만듭니다."""
    model = MagicMock()
    model.transcribe.return_value = (iter(segments), types.SimpleNamespace(language="ko", duration=2.0))
    module = types.ModuleType("faster_whisper")
    module.WhisperModel = MagicMock(return_value=model)
    return module, model


def test_faster_whisper_option_mapping():
    module, model = _fake_faster_whisper([])
    with patch.dict(sys.modules, {"faster_whisper": module}):
        engine = FasterWhisperEngine("base", device="cpu", compute_type="int8", threads=4, translate=True)
        list(engine.transcribe(np.zeros(16, dtype=np.float32), RecognizerOptions(language="ko", prompt="회의록")))

    module.WhisperModel.assert_called_once_with("base", device="cpu", compute_type="int8", cpu_threads=4)
    _, kwargs = model.transcribe.call_args
    assert kwargs["language"] == "ko"
    assert kwargs["initial_prompt"] == "회의록"
    assert kwargs["task"] == "translate"
    assert kwargs["word_timestamps"] is False


def test_faster_whisper_auto_language_maps_to_none():
    module, model = _fake_faster_whisper([])
    with patch.dict(sys.modules, {"faster_whisper": module}):
        engine = FasterWhisperEngine("base")
        list(engine.transcribe(np.zeros(16, dtype=np.float32), RecognizerOptions()))

    module.WhisperModel.assert_called_once_with("base", device="cpu", compute_type="int8")
    _, kwargs = model.transcribe.call_args
    assert kwargs["language"] is None
    assert "task" not in kwargs
    assert "initial_prompt" not in kwargs


def test_faster_whisper_segments_and_confidence():
    raw_segments = [
        types.SimpleNamespace(text=" 안녕하세요", start=0.0, end=1.2, no_speech_prob=0.1),
        types.SimpleNamespace(text=" 반갑습니다", start=1.2, end=2.0, no_speech_prob=1.5),
    ]
    module, _ = _fake_faster_whisper(raw_segments)
    with patch.dict(sys.modules, {"faster_whisper": module}):
        engine = FasterWhisperEngine("base")
        segments = list(engine.transcribe(np.zeros(16, dtype=np.float32), RecognizerOptions()))

    assert [s.text for s in segments] == [" 안녕하세요", " 반갑습니다"]
    assert segments[0].confidence == pytest.approx(0.9)
    assert segments[1].confidence == 0.0
    assert segments[1].end == 2.0


def test_faster_whisper_transcribe_after_close():
    module, _ = _fake_faster_whisper([])
    with patch.dict(sys.modules, {"faster_whisper": module}):
        engine = FasterWhisperEngine("base")
        engine.close()
        with pytest.raises(LifecycleError):
            list(engine.transcribe(np.zeros(1, dtype=np.float32), RecognizerOptions()))


def test_loader_uses_engine_config():
    module, _ = _fake_faster_whisper([])
    config = EngineConfig(model_path="small", device="cuda", compute_type="float16", threads=0)
    with patch.dict(sys.modules, {"faster_whisper": module}):
        engine = FasterWhisperEngine.loader(config)("small")

    assert isinstance(engine, FasterWhisperEngine)
    module.WhisperModel.assert_called_once_with("small", device="cuda", compute_type="float16")
