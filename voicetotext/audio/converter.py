"""
오디오 샘플 변환 모듈입니다.

역할:
- 스테레오(및 멀티채널) 16bit PCM → 모노 믹스다운
- 선형 보간 리샘플링 (임의 샘플레이트 → 16kHz)
- PCM16 ↔ float32 변환

모든 함수는 상태가 없는 순수 함수이며, 입력 bytes를 변경하지 않습니다.
정수 연산은 원본 샘플 값 기준으로 0 방향 절삭(truncation)을 사용하므로
같은 입력에 대해 항상 비트 단위로 동일한 결과를 냅니다.

사용 예시:
    >>> mono = stereo_to_mono(stereo_pcm)
    >>> pcm_16k = resample(mono, 44100, 16000)
    >>> samples = pcm16_to_float(pcm_16k)
"""

from __future__ import annotations

import logging
from typing import Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

# PCM16 정규화 기준값 (디코딩은 32768, 인코딩은 32767 사용)
_INT16_DECODE_SCALE = 32768.0
_INT16_ENCODE_SCALE = 32767.0

# little-endian signed 16bit
_PCM16_DTYPE = np.dtype("<i2")

FloatSamples = Union[np.ndarray, Sequence[float]]


# =============================================================================
# 채널 변환
# =============================================================================

def stereo_to_mono(data: bytes) -> bytes:
    """
    스테레오 16bit PCM을 좌우 채널 평균으로 모노 변환합니다.

    각 프레임의 (left + right) / 2를 0 방향으로 절삭하여 모노 샘플 1개로 씁니다.
    4바이트 단위로 나누어떨어지지 않는 끝부분은 버립니다.

    파라미터:
        data: 인터리브된 스테레오 PCM16 바이트 (L, R, L, R, ...)

    반환값:
        bytes: 모노 PCM16 바이트 (길이 = 입력 프레임 수 × 2)
    """
    frames = _frames_from_bytes(data, channels=2)
    mixed = frames[:, 0] + frames[:, 1]
    return _truncate_to_pcm16(mixed / 2.0)


def mixdown_to_mono(data: bytes, channels: int) -> bytes:
    """
    N채널 16bit PCM을 모든 채널 평균으로 모노 변환합니다.

    channels=1이면 복사본을, channels=2이면 stereo_to_mono 결과를 반환합니다.
    3채널 이상은 채널 합을 채널 수로 나눈 뒤 0 방향으로 절삭합니다.

    파라미터:
        data: 인터리브된 PCM16 바이트
        channels: 채널 수 (1 이상)

    반환값:
        bytes: 모노 PCM16 바이트

    에러:
        ValueError: channels가 1 미만일 때
    """
    if channels < 1:
        raise ValueError(f"채널 수는 1 이상이어야 합니다: {channels}")
    if channels == 1:
        usable = len(data) - len(data) % 2
        return bytes(data[:usable])
    if channels == 2:
        return stereo_to_mono(data)

    frames = _frames_from_bytes(data, channels=channels)
    return _truncate_to_pcm16(frames.sum(axis=1) / float(channels))


# =============================================================================
# 샘플레이트 변환
# =============================================================================

def resample(data: bytes, source_rate: int, target_rate: int) -> bytes:
    """
    모노 16bit PCM을 선형 보간으로 리샘플링합니다.

    ratio = source_rate / target_rate 일 때 출력 i번째 샘플은
    입력 위치 i × ratio의 앞뒤 두 샘플을 선형 보간한 값입니다.
    마지막 샘플 뒤쪽은 마지막 샘플 값으로 고정합니다.
    안티에일리어싱 필터는 적용하지 않습니다 (음성 용도로 충분).

    파라미터:
        data: 모노 PCM16 바이트
        source_rate: 입력 샘플레이트 (Hz)
        target_rate: 출력 샘플레이트 (Hz)

    반환값:
        bytes: 리샘플링된 모노 PCM16 바이트.
            source_rate == target_rate이면 입력과 동일한 복사본

    에러:
        ValueError: 샘플레이트가 0 이하일 때
    """
    if source_rate == target_rate:
        return bytes(data)
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(
            f"샘플레이트는 양수여야 합니다: source={source_rate}, target={target_rate}"
        )

    samples = _samples_from_bytes(data)
    source_count = len(samples)
    ratio = source_rate / target_rate
    target_count = int(source_count / ratio)

    if source_count == 0 or target_count == 0:
        return b""

    positions = np.arange(target_count, dtype=np.float64) * ratio
    indices = np.minimum(positions.astype(np.int64), source_count - 1)
    fractions = positions - indices

    s0 = samples[indices].astype(np.float64)
    s1 = samples[np.minimum(indices + 1, source_count - 1)].astype(np.float64)
    interpolated = s0 + (s1 - s0) * fractions

    logger.debug(
        f"리샘플링: {source_rate}Hz → {target_rate}Hz, "
        f"{source_count} → {target_count} samples"
    )
    return _truncate_to_pcm16(interpolated)


# =============================================================================
# PCM16 ↔ float32 변환
# =============================================================================

def pcm16_to_float(data: bytes) -> np.ndarray:
    """
    16bit PCM 바이트를 -1.0~+1.0 범위 float32 배열로 변환합니다.

    각 샘플을 32768.0으로 나눕니다.

    파라미터:
        data: PCM16 바이트

    반환값:
        np.ndarray: float32 샘플 배열
    """
    samples = _samples_from_bytes(data)
    return samples.astype(np.float32) / np.float32(_INT16_DECODE_SCALE)


def float_to_pcm16(samples: FloatSamples) -> bytes:
    """
    float 샘플을 16bit PCM 바이트로 변환합니다.

    각 샘플을 [-1.0, 1.0]으로 클리핑하고 32767.0을 곱한 뒤 0 방향으로 절삭합니다.
    디코딩(÷32768)과 스케일이 비대칭이므로 왕복 변환은 원래 값과 ±1 이내로 일치합니다.
    NaN은 0으로 처리합니다.

    파라미터:
        samples: float 샘플 시퀀스 또는 numpy 배열

    반환값:
        bytes: little-endian PCM16 바이트
    """
    arr = np.asarray(samples, dtype=np.float32).reshape(-1)
    arr = np.nan_to_num(arr, nan=0.0, posinf=1.0, neginf=-1.0)
    clipped = np.clip(arr, -1.0, 1.0).astype(np.float32)
    return _truncate_to_pcm16(clipped * np.float32(_INT16_ENCODE_SCALE))


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _samples_from_bytes(data: bytes) -> np.ndarray:
    """PCM16 바이트를 int16 배열로 읽습니다. 홀수 끝 바이트는 버립니다."""
    usable = len(data) - len(data) % 2
    return np.frombuffer(bytes(data[:usable]), dtype=_PCM16_DTYPE)


def _frames_from_bytes(data: bytes, channels: int) -> np.ndarray:
    """
    인터리브된 PCM16 바이트를 shape=(frames, channels) int32 배열로 읽습니다.

    int16 합산 시 오버플로우를 막기 위해 int32로 확장합니다.
    """
    frame_bytes = 2 * channels
    usable = len(data) - len(data) % frame_bytes
    samples = np.frombuffer(bytes(data[:usable]), dtype=_PCM16_DTYPE)
    return samples.astype(np.int32).reshape(-1, channels)


def _truncate_to_pcm16(values: np.ndarray) -> bytes:
    """실수 배열을 0 방향으로 절삭하여 little-endian int16 바이트로 변환합니다."""
    return np.trunc(values).astype(_PCM16_DTYPE).tobytes()
