"""
STT 모듈 패키지

공통 데이터 타입:
- RecognizerOptions: 인식 옵션 (언어, 프롬프트, 단어 타임스탬프)
- TranscriptionSegment: 시간 구간이 있는 전사 텍스트 조각
- TranscriptionResult: 배치 전사 최종 결과
- StreamingRecognitionEvent: 스트리밍 partial/final 결과 이벤트
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

# 언어 자동 감지 값
AUTO_LANGUAGE = "auto"


@dataclass(frozen=True)
class RecognizerOptions:
    """
    전사 요청 옵션입니다.

    필드:
        language: 인식 언어 코드 (예: "ko", "en") 또는 "auto" (자동 감지)
        prompt: 엔진에 전달할 초기 프롬프트 (선택)
        word_timestamps: 단어 단위 타임스탬프 요청 여부
    """
    language: str = AUTO_LANGUAGE
    prompt: Optional[str] = None
    word_timestamps: bool = False

    @property
    def detect_language(self) -> bool:
        return not self.language or self.language == AUTO_LANGUAGE


@dataclass
class TranscriptionSegment:
    """
    전사된 텍스트 구간입니다.

    필드:
        text: 전사 텍스트
        start: 구간 시작 오프셋 (초)
        end: 구간 종료 오프셋 (초, start 이상)
        confidence: 신뢰도 (0.0~1.0)
    """
    text: str
    start: float
    end: float
    confidence: float = 1.0


@dataclass
class TranscriptionResult:
    """
    배치 전사 결과 컨테이너입니다.

    필드:
        text: 각 세그먼트 텍스트를 trim 후 공백 하나로 이어붙인 문자열 (빈 세그먼트 제외)
        segments: 엔진이 생성한 순서 그대로의 세그먼트 목록
        duration: 마지막 세그먼트의 end (세그먼트가 없으면 0.0)
    """
    text: str
    segments: list[TranscriptionSegment] = field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def from_segments(cls, segments: Sequence[TranscriptionSegment]) -> "TranscriptionResult":
        """세그먼트 목록으로 결과를 조립합니다."""
        segment_list = list(segments)
        texts = (segment.text.strip() for segment in segment_list)
        text = " ".join(t for t in texts if t)
        duration = segment_list[-1].end if segment_list else 0.0
        return cls(text=text, segments=segment_list, duration=duration)


@dataclass(frozen=True)
class StreamingRecognitionEvent:
    """
    스트리밍 인식 결과 이벤트입니다.

    필드:
        text: 인식된 텍스트
        is_final: True이면 stop() 시점의 최종 결과, False이면 중간(partial) 결과
    """
    text: str
    is_final: bool
