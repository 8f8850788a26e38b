"""
오디오 정규화 모듈입니다.

역할:
- 임의 포맷(N kHz / 16bit / C ch) PCM을 전사 엔진 입력 포맷(16kHz/16bit/mono)으로 변환
- 표준 PCM16을 float32 샘플 스트림으로 변환
- 표준 PCM16을 고정 크기 청크로 분할

사용 예시:
    >>> normalizer = AudioNormalizer()
    >>> samples = normalizer.to_samples(wav.pcm_data, wav.format)  # np.ndarray(float32)
"""

from __future__ import annotations

import logging

import numpy as np

from voicetotext.audio import DEFAULT_SAMPLE_RATE, AudioFormat
from voicetotext.audio.converter import mixdown_to_mono, pcm16_to_float, resample

logger = logging.getLogger(__name__)


class AudioNormalizer:
    """
    PCM16 오디오를 표준 포맷(16kHz/16bit/mono)으로 정규화하는 클래스입니다.

    변환 파이프라인:
        PCM16 (N kHz / C ch)
            → 비트뎁스 검증 (16bit 외 FormatError)
            → 채널 믹스다운 (C → 1, 스테레오는 좌우 평균)
            → 선형 보간 리샘플링 (N kHz → 16 kHz)
            → float32 변환 (÷32768)
    """

    def __init__(self, target_sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
        """
        AudioNormalizer를 초기화합니다.

        파라미터:
            target_sample_rate: 출력 샘플레이트 (Hz, 기본 16000)
        """
        self._target_sample_rate = target_sample_rate

    @property
    def target_sample_rate(self) -> int:
        return self._target_sample_rate

    # =========================================================================
    # 공개 메서드
    # =========================================================================

    def normalize(self, pcm_data: bytes, audio_format: AudioFormat) -> bytes:
        """
        PCM16 바이트를 16kHz/16bit/mono PCM16 바이트로 변환합니다.

        파라미터:
            pcm_data: 인터리브된 PCM16 바이트
            audio_format: pcm_data의 포맷

        반환값:
            bytes: 표준 포맷 PCM16 바이트

        에러:
            FormatError: 16bit PCM이 아니거나 포맷 값이 유효하지 않을 때
        """
        audio_format.require_pcm16()
        pcm = pcm_data

        if audio_format.channels > 1:
            logger.debug(f"채널 믹스다운: {audio_format.channels}ch → mono")
            pcm = mixdown_to_mono(pcm, audio_format.channels)

        if audio_format.sample_rate != self._target_sample_rate:
            logger.debug(
                f"리샘플링: {audio_format.sample_rate}Hz → {self._target_sample_rate}Hz"
            )
            pcm = resample(pcm, audio_format.sample_rate, self._target_sample_rate)

        return pcm

    def to_samples(self, pcm_data: bytes, audio_format: AudioFormat) -> np.ndarray:
        """
        PCM16 바이트를 전사 엔진 입력용 float32 mono 16kHz 샘플로 변환합니다.

        파라미터:
            pcm_data: 인터리브된 PCM16 바이트
            audio_format: pcm_data의 포맷

        반환값:
            np.ndarray: -1.0~+1.0 범위 float32 샘플 배열
        """
        return pcm16_to_float(self.normalize(pcm_data, audio_format))

    def split_chunks(self, pcm_data: bytes, chunk_size: int) -> list[bytes]:
        """
        PCM 데이터를 chunk_size 바이트 단위로 분할합니다.

        파라미터:
            pcm_data: 분할할 16bit PCM 데이터 (bytes)
            chunk_size: 청크당 바이트 수 (짝수 권장)

        반환값:
            list[bytes]: 분할된 PCM 청크 목록 (마지막 청크는 더 짧을 수 있음)

        에러:
            ValueError: chunk_size가 0 이하일 때
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size는 양수여야 합니다: {chunk_size}")
        chunks = []
        for offset in range(0, len(pcm_data), chunk_size):
            chunks.append(pcm_data[offset:offset + chunk_size])
        return chunks
