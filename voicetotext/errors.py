"""
VoiceToText 공통 에러 정의 모듈입니다.

에러 분류:
- FormatError: 잘못되었거나 지원하지 않는 오디오 컨테이너/포맷
- StateError: 스트리밍 세션의 잘못된 상태 전이
- EngineError: 전사 엔진 호출 실패
- LifecycleError: 이미 해제된 인스턴스에 대한 호출
"""

from __future__ import annotations


class VoiceToTextError(Exception):
    """VoiceToText에서 발생하는 모든 에러의 기본 클래스입니다."""
    pass


class FormatError(VoiceToTextError, ValueError):
    """RIFF/WAVE 컨테이너가 손상되었거나 지원하지 않는 포맷일 때 발생하는 에러입니다."""
    pass


class StateError(VoiceToTextError, RuntimeError):
    """세션 상태에서 허용되지 않는 동작을 호출했을 때 발생하는 에러입니다."""
    pass


class EngineError(VoiceToTextError):
    """전사 엔진 생성 또는 추론이 실패했을 때 발생하는 에러입니다."""
    pass


class LifecycleError(VoiceToTextError, RuntimeError):
    """이미 종료(close)된 인스턴스를 사용하려 할 때 발생하는 에러입니다."""
    pass
