"""
오디오 소스 모듈 패키지

오디오 소스는 표준 포맷(16kHz/16bit/mono) AudioChunk를 asyncio.Queue로 내보냅니다.
큐의 None은 스트림 종료 신호입니다.
"""

from voicetotext.capture.file_audio_source import FileAudioSource, pump_to_session

__all__ = ["FileAudioSource", "pump_to_session"]
