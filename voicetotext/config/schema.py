"""
VoiceToText 설정 스키마 정의 모듈입니다.

역할:
- Pydantic v2 BaseModel 기반으로 config.yaml의 전체 구조를 타입 안전하게 정의
- 각 섹션(system, engine, recognizer, streaming, capture)을
  독립적인 중첩 모델로 분리
- 필드별 기본값, 허용 범위, 유효성 검증(validator)을 포함

사용 예시:
    >>> from voicetotext.config.schema import AppConfig
    >>> config = AppConfig(**yaml_data)
    >>> print(config.engine.model_path)
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from voicetotext.audio import DEFAULT_BYTE_RATE
from voicetotext.stt import AUTO_LANGUAGE, RecognizerOptions

# 모듈 로거 설정
logger = logging.getLogger(__name__)


# =============================================================================
# system 섹션: 시스템 전역 설정
# =============================================================================

class SystemConfig(BaseModel):
    """
    시스템 전역 설정을 정의하는 모델입니다.

    역할:
    - 로깅 레벨 및 포맷 지정
    - 세션 식별자 관리
    """
    # 로그 출력 레벨
    log_level: str = Field(default="INFO", description="로그 레벨 (DEBUG | INFO | WARNING | ERROR)")
    # 로그 출력 포맷
    log_format: str = Field(default="text", description="로그 포맷 (json | text)")
    # 로그 파일 저장 디렉토리 경로
    log_dir: str = Field(default="output/logs", description="로그 저장 디렉토리")
    # 세션 고유 식별자 (빈 문자열이면 UUID로 자동 생성)
    session_id: str = Field(default="", description="세션 ID (비어있으면 UUID 자동생성)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """로그 레벨이 유효한 Python 로깅 레벨인지 검증합니다."""
        allowed_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        # 대소문자 구분 없이 비교 후 대문자로 정규화
        upper_value = value.upper()
        if upper_value not in allowed_levels:
            error_message = f"log_level은 {allowed_levels} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return upper_value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """로그 포맷이 지원되는 형식인지 검증합니다."""
        allowed_formats = ("json", "text")
        if value not in allowed_formats:
            error_message = f"log_format은 {allowed_formats} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


# =============================================================================
# engine 섹션: 전사 엔진 설정
# =============================================================================

class EngineConfig(BaseModel):
    """
    전사 엔진(faster-whisper) 로드 설정입니다.

    역할:
    - 모델 경로/이름 지정
    - 추론 장치, 양자화 타입, 스레드 수 설정
    - 번역 모드 설정
    """
    # 모델 이름(예: "base") 또는 모델 디렉토리 경로
    model_path: str = Field(default="base", description="모델 이름 또는 경로")
    # 추론 장치
    device: str = Field(default="cpu", description="추론 장치 (cpu | cuda | auto)")
    # CTranslate2 양자화 타입
    compute_type: str = Field(default="int8", description="양자화 타입 (int8 | float16 | float32)")
    # CPU 스레드 수 (0 = 자동)
    threads: int = Field(default=0, description="CPU 스레드 수 (0 = 자동)")
    # 영어 번역 모드
    translate: bool = Field(default=False, description="영어 번역 모드")

    @field_validator("model_path")
    @classmethod
    def validate_model_path(cls, value: str) -> str:
        """모델 경로가 비어있지 않은지 검증합니다."""
        if not value.strip():
            raise ValueError("model_path는 비어있을 수 없습니다")
        return value

    @field_validator("threads")
    @classmethod
    def validate_threads(cls, value: int) -> int:
        """스레드 수가 0 이상인지 검증합니다."""
        if value < 0:
            raise ValueError(f"threads는 0 이상이어야 합니다. 입력값: {value}")
        return value


# =============================================================================
# recognizer 섹션: 기본 인식 옵션
# =============================================================================

class RecognizerConfig(BaseModel):
    """
    요청별 옵션이 없을 때 사용하는 기본 인식 옵션입니다.
    """
    # 인식 언어 ("auto"는 자동 감지)
    language: str = Field(default=AUTO_LANGUAGE, description="인식 언어 (auto | ko | en ...)")
    # 초기 프롬프트
    prompt: Optional[str] = Field(default=None, description="초기 프롬프트")
    # 단어 단위 타임스탬프
    word_timestamps: bool = Field(default=False, description="단어 타임스탬프 요청 여부")

    def to_options(self) -> RecognizerOptions:
        """RecognizerOptions로 변환합니다."""
        return RecognizerOptions(
            language=self.language or AUTO_LANGUAGE,
            prompt=self.prompt,
            word_timestamps=self.word_timestamps,
        )


# =============================================================================
# streaming 섹션: 스트리밍 세션 설정
# =============================================================================

class StreamingConfig(BaseModel):
    """
    스트리밍 세션의 버퍼링/주기 설정입니다.

    역할:
    - partial 재전사를 시작할 누적 오디오 길이(초) 지정
    - 버퍼 검사 주기 설정
    - 결과 큐 크기 제한
    """
    # partial 재전사 임계 버퍼 길이 (초)
    buffer_duration_sec: float = Field(default=3.0, description="partial 재전사 임계 버퍼 길이 (초)")
    # 버퍼 검사 주기 (밀리초)
    poll_interval_ms: int = Field(default=500, description="버퍼 검사 주기 (ms)")
    # 결과 이벤트 큐 최대 크기
    result_queue_size: int = Field(default=100, description="결과 이벤트 큐 크기")

    @field_validator("buffer_duration_sec")
    @classmethod
    def validate_buffer_duration(cls, value: float) -> float:
        """버퍼 길이가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"buffer_duration_sec는 양수여야 합니다. 입력값: {value}")
        return value

    @field_validator("poll_interval_ms", "result_queue_size")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """주기/큐 크기가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"양수여야 합니다. 입력값: {value}")
        return value

    @property
    def threshold_bytes(self) -> int:
        """partial 재전사 임계값 (bytes) = 버퍼 길이 × 16000Hz × 2bytes"""
        return int(self.buffer_duration_sec * DEFAULT_BYTE_RATE)


# =============================================================================
# capture 섹션: 파일 오디오 소스 설정
# =============================================================================

class CaptureConfig(BaseModel):
    """
    파일 기반 오디오 소스 설정입니다.

    역할:
    - 청크 크기와 재생 속도 제어
    - 큐 크기 제한으로 메모리 사용량 제어
    """
    # 청크 크기 (밀리초)
    chunk_size_ms: int = Field(default=100, description="오디오 청크 크기 (ms)")
    # 재생 속도 배율 (1.0 = 실시간)
    playback_speed: float = Field(default=1.0, description="재생 속도 (1.0 = 실시간)")
    # 오디오 청크 큐 최대 크기
    queue_size: int = Field(default=100, description="오디오 큐 최대 청크 수")

    @field_validator("chunk_size_ms", "queue_size")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """청크 크기/큐 크기가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"양수여야 합니다. 입력값: {value}")
        return value

    @field_validator("playback_speed")
    @classmethod
    def validate_playback_speed(cls, value: float) -> float:
        """재생 속도가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"playback_speed는 양수여야 합니다. 입력값: {value}")
        return value


# =============================================================================
# 최상위 AppConfig: 모든 섹션을 통합하는 루트 모델
# =============================================================================

class AppConfig(BaseModel):
    """
    애플리케이션 전체 설정을 통합하는 최상위 모델입니다.

    역할:
    - config.yaml의 모든 섹션을 하나의 타입 안전한 객체로 통합
    - Pydantic v2 유효성 검증을 통해 설정 무결성 보장
    - 각 섹션이 누락된 경우 기본값으로 자동 생성

    사용 예시:
        >>> import yaml
        >>> with open("config.yaml") as f:
        ...     raw = yaml.safe_load(f)
        >>> config = AppConfig(**raw)
        >>> print(config.streaming.threshold_bytes)
        96000
    """
    # 시스템 전역 설정
    system: SystemConfig = Field(default_factory=SystemConfig, description="시스템 설정")
    # 전사 엔진 설정
    engine: EngineConfig = Field(default_factory=EngineConfig, description="엔진 설정")
    # 기본 인식 옵션
    recognizer: RecognizerConfig = Field(default_factory=RecognizerConfig, description="인식 옵션")
    # 스트리밍 세션 설정
    streaming: StreamingConfig = Field(default_factory=StreamingConfig, description="스트리밍 설정")
    # 파일 오디오 소스 설정
    capture: CaptureConfig = Field(default_factory=CaptureConfig, description="캡처 설정")
