"""
오디오 처리 모듈 패키지

공통 데이터 타입:
- AudioFormat: 샘플레이트/채널/비트뎁스 메타데이터
- AudioChunk: 오디오 소스가 내보내는 정규화된 PCM 청크 컨테이너

표준(canonical) 포맷 상수:
- 16kHz / mono / 16bit PCM (전사 엔진 입력 기준)
"""

from dataclasses import dataclass

from voicetotext.errors import FormatError

# 표준 포맷 고정값
DEFAULT_SAMPLE_RATE = 16000
DEFAULT_CHANNELS = 1
DEFAULT_BITS_PER_SAMPLE = 16
DEFAULT_BYTES_PER_SAMPLE = DEFAULT_BITS_PER_SAMPLE // 8
DEFAULT_BLOCK_ALIGN = DEFAULT_CHANNELS * DEFAULT_BYTES_PER_SAMPLE
# 초당 바이트 수 (32000 bytes/s)
DEFAULT_BYTE_RATE = DEFAULT_SAMPLE_RATE * DEFAULT_BLOCK_ALIGN


@dataclass(frozen=True)
class AudioFormat:
    """
    PCM 오디오 포맷 메타데이터입니다.

    필드:
        sample_rate: 샘플링레이트 (Hz)
        channels: 채널 수 (1=mono, 2=stereo)
        bits_per_sample: 비트뎁스 (이 코어는 16bit만 지원)
    """
    sample_rate: int
    channels: int
    bits_per_sample: int

    @classmethod
    def canonical(cls) -> "AudioFormat":
        """16kHz/mono/16bit 표준 포맷을 반환합니다."""
        return cls(DEFAULT_SAMPLE_RATE, DEFAULT_CHANNELS, DEFAULT_BITS_PER_SAMPLE)

    @property
    def block_align(self) -> int:
        """프레임 1개(모든 채널의 샘플 1개씩)의 바이트 수입니다."""
        return self.channels * (self.bits_per_sample // 8)

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align

    @property
    def is_canonical(self) -> bool:
        return self == AudioFormat.canonical()

    def require_pcm16(self) -> None:
        """
        16bit PCM이 아니거나 값이 유효하지 않으면 FormatError를 발생시킵니다.

        에러:
            FormatError: 비트뎁스가 16이 아니거나 채널/샘플레이트가 0 이하일 때
        """
        if self.bits_per_sample != DEFAULT_BITS_PER_SAMPLE:
            raise FormatError(
                f"16bit PCM만 지원합니다. 입력 비트뎁스: {self.bits_per_sample}"
            )
        if self.channels <= 0:
            raise FormatError(f"채널 수가 유효하지 않습니다: {self.channels}")
        if self.sample_rate <= 0:
            raise FormatError(f"샘플레이트가 유효하지 않습니다: {self.sample_rate}")


@dataclass
class AudioChunk:
    """
    오디오 소스가 생성하는 표준 포맷 PCM 청크 컨테이너입니다.

    필드:
        chunk_id: 청크 순번 (0부터 시작)
        timestamp_ns: 청크 시작 시각 (nanoseconds, time.time_ns() 기준)
        data: 16kHz/16bit/mono PCM 바이트 데이터
    """
    chunk_id: int
    timestamp_ns: int
    data: bytes

    @property
    def duration_ms(self) -> float:
        """청크 길이 (밀리초)"""
        return len(self.data) / DEFAULT_BYTE_RATE * 1000.0
