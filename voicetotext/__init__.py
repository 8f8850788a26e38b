"""
VoiceToText 패키지

임의 포맷 오디오를 16kHz/16bit/mono PCM으로 정규화하고,
외부 음성 인식 엔진에 배치/스트리밍 전사를 요청하는 코어 라이브러리입니다.
"""

__version__ = "0.1.0"
