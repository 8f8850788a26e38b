"""
VoiceToText 명령행 진입점

역할:
- batch: WAV 파일 전체를 한 번에 전사하여 텍스트/길이/세그먼트 출력
- stream: WAV 파일을 실시간 속도로 스트리밍 세션에 공급하며 partial/final 결과 출력
- 설정 파일이 없으면 기본 설정 + VTT_ 환경변수로 실행

실행 예시:
    배치 전사:
        python main.py batch tests/fixtures/speech.wav --language ko

    스트리밍 전사 (2배속 재생):
        python main.py stream tests/fixtures/speech.wav --playback-speed 2.0
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from voicetotext.capture import FileAudioSource, pump_to_session
from voicetotext.config.config_manager import ConfigLoadError, ConfigManager
from voicetotext.config.schema import AppConfig
from voicetotext.errors import VoiceToTextError
from voicetotext.logging import setup_logging
from voicetotext.stt import StreamingRecognitionEvent
from voicetotext.stt.batch import BatchTranscriber
from voicetotext.stt.engine import EngineCache, FasterWhisperEngine
from voicetotext.stt.streaming import StreamingSession

logger = logging.getLogger(__name__)


# =============================================================================
# 실행 모드
# =============================================================================

async def _run_batch(config: AppConfig, engine_cache: EngineCache, audio_path: Path) -> None:
    """WAV 파일을 배치 전사하고 결과를 stdout에 출력합니다."""
    async with BatchTranscriber(config, engine_cache) as transcriber:
        result = await transcriber.transcribe_file(audio_path)

    print(result.text)
    print(f"\n[duration] {result.duration:.2f}s, segments={len(result.segments)}")
    for segment in result.segments:
        print(
            f"  [{segment.start:7.2f} → {segment.end:7.2f}] "
            f"({segment.confidence:.2f}) {segment.text.strip()}"
        )


async def _run_stream(config: AppConfig, engine_cache: EngineCache, audio_path: Path) -> None:
    """WAV 파일을 스트리밍 세션에 공급하며 partial/final 이벤트를 stdout에 출력합니다."""

    def _print_event(event: StreamingRecognitionEvent) -> None:
        label = "final" if event.is_final else "partial"
        print(f"[{label}] {event.text}", flush=True)

    def _print_error(error: Exception) -> None:
        print(f"[error] {error}", file=sys.stderr, flush=True)

    source = FileAudioSource(config, audio_path)

    async with StreamingSession(config, engine_cache) as session:
        session.subscribe_partial(_print_event)
        session.subscribe_final(_print_event)
        session.subscribe_error(_print_error)

        await session.start()
        await source.start()
        try:
            chunk_count = await pump_to_session(source, session)
            logger.info(f"오디오 공급 완료: {chunk_count}개 청크")
        finally:
            await source.stop()
            await session.stop()


# =============================================================================
# 진입점
# =============================================================================

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자를 파싱합니다."""
    parser = argparse.ArgumentParser(
        description="VoiceToText: WAV 오디오 정규화 및 배치/스트리밍 전사"
    )
    parser.add_argument(
        "--config", default="config.yaml", help="설정 파일 경로 (기본: config.yaml, 없으면 기본값)"
    )
    parser.add_argument("--model", help="모델 이름 또는 경로 (engine.model_path 오버라이드)")
    parser.add_argument("--language", help="인식 언어 (recognizer.language 오버라이드, auto=자동 감지)")
    parser.add_argument(
        "--no-log-file", action="store_true", help="로그 파일 없이 콘솔(stderr)에만 로그 출력"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    batch_parser = subparsers.add_parser("batch", help="WAV 파일 전체를 한 번에 전사")
    batch_parser.add_argument("audio", help="WAV 파일 경로")

    stream_parser = subparsers.add_parser("stream", help="WAV 파일을 실시간 스트리밍으로 전사")
    stream_parser.add_argument("audio", help="WAV 파일 경로")
    stream_parser.add_argument(
        "--playback-speed", type=float, help="재생 속도 (capture.playback_speed 오버라이드)"
    )
    stream_parser.add_argument(
        "--buffer-sec", type=float, help="partial 재전사 버퍼 길이 (streaming.buffer_duration_sec 오버라이드)"
    )

    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> AppConfig:
    """설정 파일(없으면 기본값)을 로드하고 커맨드라인 오버라이드를 적용합니다."""
    manager = ConfigManager()
    if Path(args.config).exists():
        config = manager.load(args.config)
    else:
        config = manager.load_defaults()

    # Pydantic 모델을 dict로 풀어 오버라이드 후 재검증
    config_dict = config.model_dump()
    if args.model:
        config_dict["engine"]["model_path"] = args.model
    if args.language:
        config_dict["recognizer"]["language"] = args.language
    if getattr(args, "playback_speed", None):
        config_dict["capture"]["playback_speed"] = args.playback_speed
    if getattr(args, "buffer_sec", None):
        config_dict["streaming"]["buffer_duration_sec"] = args.buffer_sec
    return AppConfig(**config_dict)


async def _main(argv: list[str] | None = None) -> int:
    """비동기 메인 함수입니다. 프로세스 종료 코드를 반환합니다."""
    args = _parse_args(argv)

    try:
        config = _load_config(args)
    except (ConfigLoadError, ValueError) as exc:
        print(f"설정 로드 실패: {exc}", file=sys.stderr)
        return 2

    session_id = setup_logging(config, log_to_file=not args.no_log_file)
    logger.info(f"VoiceToText 시작: command={args.command}, session_id={session_id}")

    audio_path = Path(args.audio)
    engine_cache = EngineCache(FasterWhisperEngine.loader(config.engine))

    try:
        if args.command == "batch":
            await _run_batch(config, engine_cache, audio_path)
        else:
            await _run_stream(config, engine_cache, audio_path)
    except (VoiceToTextError, FileNotFoundError) as exc:
        logger.error(f"전사 실패: {exc}")
        return 1
    finally:
        engine_cache.clear()

    logger.info("VoiceToText 종료")
    return 0


def cli() -> None:
    """콘솔 스크립트(voicetotext) 진입점입니다."""
    sys.exit(asyncio.run(_main()))


if __name__ == "__main__":
    cli()
