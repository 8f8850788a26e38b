"""
명령행 진입점 단위 테스트

검증 항목:
- 인자 파싱 및 커맨드라인 설정 오버라이드
- batch 모드 실행 결과 출력 (엔진 loader는 mock)
- 잘못된 WAV는 종료 코드 1
"""

from __future__ import annotations

import logging
import struct
from unittest.mock import patch

import pytest

import main
from voicetotext.audio import AudioFormat
from voicetotext.audio.wav_reader import write_wav
from voicetotext.stt import TranscriptionSegment


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()


class _FakeEngine:
    def transcribe(self, samples, options):
        return [TranscriptionSegment(text=" 테스트 문장 ", start=0.0, end=0.25, confidence=0.8)]


def _fake_loader_factory(engine_config):
    return lambda model_path: _FakeEngine()


def _write_wav(tmp_path):
    path = tmp_path / "speech.wav"
    pcm = struct.pack("<4h", 0, 100, 200, 300)
    path.write_bytes(write_wav(pcm, AudioFormat(sample_rate=32000, channels=2, bits_per_sample=16)))
    return path


def test_parse_batch_args():
    args = main._parse_args(["--model", "tiny", "batch", "a.wav"])
    assert args.command == "batch"
    assert args.audio == "a.wav"
    assert args.model == "tiny"


def test_load_config_applies_overrides(tmp_path):
    args = main._parse_args([
        "--config", str(tmp_path / "missing.yaml"),
        "--language", "ko",
        "stream", "a.wav", "--playback-speed", "4", "--buffer-sec", "1.5",
    ])

    config = main._load_config(args)

    assert config.recognizer.language == "ko"
    assert config.capture.playback_speed == 4.0
    assert config.streaming.buffer_duration_sec == 1.5


@pytest.mark.asyncio
async def test_batch_command_prints_result(tmp_path, capsys):
    wav_path = _write_wav(tmp_path)
    with patch.object(main.FasterWhisperEngine, "loader", side_effect=_fake_loader_factory):
        exit_code = await main._main([
            "--config", str(tmp_path / "missing.yaml"), "--no-log-file", "batch", str(wav_path),
        ])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "테스트 문장" in out
    assert "segments=1" in out


@pytest.mark.asyncio
async def test_batch_command_invalid_wav_returns_error_code(tmp_path):
    bad_path = tmp_path / "bad.wav"
    bad_path.write_bytes(b"definitely not riff")
    with patch.object(main.FasterWhisperEngine, "loader", side_effect=_fake_loader_factory):
        exit_code = await main._main([
            "--config", str(tmp_path / "missing.yaml"), "--no-log-file", "batch", str(bad_path),
        ])

    assert exit_code == 1
