"""
RIFF/WAVE 컨테이너 파서 모듈입니다.

역할:
- "RIFF"/"WAVE" 태그 검증
- "fmt " 청크에서 포맷 코드/채널 수/샘플레이트/비트뎁스 추출
- "data" 청크의 원시 PCM 페이로드 추출
- 그 외 청크는 선언된 크기만큼 건너뜀
- 모든 청크 읽기를 남은 스트림 길이로 제한 (선언 크기가 실제보다 크면 FormatError)

지원하지 않는 항목:
- 압축 WAV 인코딩 (포맷 코드 1=PCM 외 전부)
- WAVE_FORMAT_EXTENSIBLE 확장 필드 해석 (초과 바이트는 건너뜀)

사용 예시:
    >>> with open("speech.wav", "rb") as f:
    ...     wav = read_wav(f)
    >>> print(wav.format.sample_rate, len(wav.pcm_data))
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from voicetotext.audio import AudioFormat
from voicetotext.errors import FormatError

logger = logging.getLogger(__name__)

# WAVE 포맷 코드 (1 = linear PCM)
_WAVE_FORMAT_PCM = 1

# fmt 청크의 고정 필드 크기 (bytes)
_FMT_CHUNK_MIN_SIZE = 16

# 청크 헤더 크기: id(4) + size(4)
_CHUNK_HEADER_SIZE = 8


@dataclass
class WavData:
    """
    WAV 파싱 결과 컨테이너입니다.

    필드:
        format: 오디오 포맷 (샘플레이트/채널/비트뎁스)
        pcm_data: "data" 청크의 원시 PCM 바이트
    """
    format: AudioFormat
    pcm_data: bytes

    @property
    def sample_rate(self) -> int:
        return self.format.sample_rate

    @property
    def channels(self) -> int:
        return self.format.channels

    @property
    def bits_per_sample(self) -> int:
        return self.format.bits_per_sample


def read_wav(stream: BinaryIO) -> WavData:
    """
    바이너리 스트림에서 RIFF/WAVE 컨테이너를 파싱합니다.

    처리 순서:
    1. "RIFF" 태그, 파일 크기(무시), "WAVE" 태그 검증
    2. 스트림이 끝날 때까지 청크 헤더(id, size)를 순차적으로 읽음
    3. "fmt " → 포맷 정보 추출, "data" → PCM 페이로드 추출, 그 외 → 건너뜀
    4. data 청크가 없으면 실패

    파라미터:
        stream: 읽기 가능한 바이너리 스트림 (현재 위치부터 파싱)

    반환값:
        WavData: 포맷 정보와 PCM 페이로드

    에러:
        FormatError: 태그 누락, PCM이 아닌 포맷 코드, 잘린 청크,
            fmt/data 청크 누락 시
    """
    riff_header = _read_exact(stream, 12, "RIFF 헤더")
    riff_tag, _riff_size, wave_tag = struct.unpack("<4sI4s", riff_header)

    if riff_tag != b"RIFF":
        raise FormatError("WAV 파일이 아닙니다: RIFF 헤더가 없습니다")
    if wave_tag != b"WAVE":
        raise FormatError("WAV 파일이 아닙니다: WAVE 식별자가 없습니다")

    audio_format: Optional[AudioFormat] = None
    pcm_data: Optional[bytes] = None

    while True:
        header = stream.read(_CHUNK_HEADER_SIZE)
        if not header:
            break
        if len(header) < _CHUNK_HEADER_SIZE:
            # 청크 헤더보다 짧은 꼬리 바이트는 패딩으로 간주
            logger.warning(f"WAV 끝부분의 불완전한 청크 헤더 무시: {len(header)} bytes")
            break

        chunk_id, chunk_size = struct.unpack("<4sI", header)

        if chunk_id == b"fmt ":
            audio_format = _parse_fmt_chunk(stream, chunk_size)
        elif chunk_id == b"data":
            pcm_data = _read_exact(stream, chunk_size, "data 청크")
        else:
            logger.debug(f"알 수 없는 청크 건너뜀: id={chunk_id!r}, size={chunk_size}")
            _read_exact(stream, chunk_size, f"{chunk_id!r} 청크")

    if pcm_data is None:
        raise FormatError("WAV 파일에 data 청크가 없습니다")
    if audio_format is None:
        raise FormatError("WAV 파일에 fmt 청크가 없습니다")

    logger.debug(
        f"WAV 파싱 완료: {audio_format.sample_rate}Hz, "
        f"{audio_format.channels}ch, {audio_format.bits_per_sample}bit, "
        f"data={len(pcm_data)} bytes"
    )
    return WavData(format=audio_format, pcm_data=pcm_data)


def read_wav_bytes(data: bytes) -> WavData:
    """메모리상의 WAV 바이트를 파싱합니다."""
    return read_wav(io.BytesIO(data))


def read_wav_file(filepath: str | Path) -> WavData:
    """
    WAV 파일을 열어 파싱합니다.

    파라미터:
        filepath: WAV 파일 경로

    반환값:
        WavData: 포맷 정보와 PCM 페이로드

    에러:
        FileNotFoundError: 파일이 존재하지 않을 때
        FormatError: 파싱 실패 시
    """
    with open(filepath, "rb") as wav_file:
        return read_wav(wav_file)


def write_wav(pcm_data: bytes, audio_format: AudioFormat) -> bytes:
    """
    PCM 바이트를 표준 44바이트 헤더의 RIFF/WAVE 컨테이너로 감쌉니다.

    파라미터:
        pcm_data: 인터리브된 PCM 바이트
        audio_format: PCM 데이터의 포맷

    반환값:
        bytes: WAV 파일 바이트
    """
    fmt_chunk = struct.pack(
        "<HHIIHH",
        _WAVE_FORMAT_PCM,
        audio_format.channels,
        audio_format.sample_rate,
        audio_format.byte_rate,
        audio_format.block_align,
        audio_format.bits_per_sample,
    )
    riff_size = 4 + (_CHUNK_HEADER_SIZE + len(fmt_chunk)) + (_CHUNK_HEADER_SIZE + len(pcm_data))

    return b"".join([
        struct.pack("<4sI4s", b"RIFF", riff_size, b"WAVE"),
        struct.pack("<4sI", b"fmt ", len(fmt_chunk)),
        fmt_chunk,
        struct.pack("<4sI", b"data", len(pcm_data)),
        bytes(pcm_data),
    ])


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _parse_fmt_chunk(stream: BinaryIO, chunk_size: int) -> AudioFormat:
    """
    "fmt " 청크 본문을 읽어 AudioFormat을 생성합니다.

    16바이트 고정 필드 이후의 확장 바이트는 읽고 버립니다.

    에러:
        FormatError: 청크 크기가 16 미만이거나 PCM이 아닐 때
    """
    if chunk_size < _FMT_CHUNK_MIN_SIZE:
        raise FormatError(f"fmt 청크 크기가 너무 작습니다: {chunk_size} bytes")

    body = _read_exact(stream, chunk_size, "fmt 청크")
    audio_format_code, channels, sample_rate, _byte_rate, _block_align, bits_per_sample = (
        struct.unpack("<HHIIHH", body[:_FMT_CHUNK_MIN_SIZE])
    )

    if audio_format_code != _WAVE_FORMAT_PCM:
        raise FormatError(
            f"PCM WAV만 지원합니다. 포맷 코드: {audio_format_code}"
        )
    if channels == 0:
        raise FormatError("fmt 청크의 채널 수가 0입니다")
    if sample_rate == 0:
        raise FormatError("fmt 청크의 샘플레이트가 0입니다")

    return AudioFormat(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
    )


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    """
    스트림에서 정확히 size 바이트를 읽습니다.

    비차단/부분 읽기 스트림을 위해 반복해서 읽고,
    스트림이 먼저 끝나면 FormatError를 발생시킵니다.
    """
    chunks = []
    remaining = size
    while remaining > 0:
        block = stream.read(remaining)
        if not block:
            break
        chunks.append(block)
        remaining -= len(block)

    data = b"".join(chunks)
    if len(data) < size:
        raise FormatError(
            f"{what}이(가) 잘렸습니다: 선언 {size} bytes, 실제 {len(data)} bytes"
        )
    return data
