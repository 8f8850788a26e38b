"""
구조화 로깅 모듈입니다.

역할:
- python-json-logger를 사용한 JSON 포맷 로그 출력
- RotatingFileHandler로 로그 파일 자동 순환 (10MB, 5개 보존)
- session_id, module, level 공통 필드 자동 추가
- 콘솔 로그는 stderr로 출력 (stdout은 전사 결과 출력용)

사용 예시:
    >>> setup_logging(config)
    >>> logger = StructuredLogger.get(__name__)
    >>> logger.info("전사 시작", extra={"model": "base"})
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import uuid
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from voicetotext.config.schema import AppConfig

# 로그 파일 이름 및 순환 정책
LOG_FILENAME = "app.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5

_SESSION_ID: str = ""


def setup_logging(
    config: AppConfig,
    session_id: Optional[str] = None,
    log_to_file: bool = True,
) -> str:
    """
    애플리케이션 전체 로깅 설정을 초기화합니다.

    여러 번 호출해도 root logger의 기존 핸들러를 제거한 뒤 다시 등록하므로
    핸들러가 중복되지 않습니다.

    파라미터:
        config: AppConfig 인스턴스
        session_id: 세션 식별자. None이면 config.system.session_id 또는 UUID 사용
        log_to_file: False이면 파일 핸들러 없이 콘솔에만 출력

    반환값:
        str: 적용된 세션 ID
    """
    global _SESSION_ID

    _SESSION_ID = (
        session_id
        or config.system.session_id
        or str(uuid.uuid4())
    )

    log_level = getattr(logging, config.system.log_level, logging.INFO)
    log_format = config.system.log_format

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # 기존 핸들러 제거 (중복 방지)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_to_file:
        file_handler = _create_file_handler(Path(config.system.log_dir))
        if file_handler is not None:
            handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(_build_formatter(log_format, _SESSION_ID))
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        f"로깅 초기화: level={config.system.log_level}, "
        f"format={log_format}, session={_SESSION_ID}"
    )
    return _SESSION_ID


def _create_file_handler(log_dir: Path) -> Optional[logging.Handler]:
    """로그 디렉토리를 만들고 RotatingFileHandler를 생성합니다. 실패 시 None."""
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            filename=log_dir / LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        logging.getLogger(__name__).warning(f"로그 파일 핸들러 생성 실패: {exc}")
        return None


def _build_formatter(log_format: str, session_id: str) -> logging.Formatter:
    if log_format == "json":
        return _JsonFormatter(session_id=session_id)
    return _TextFormatter(session_id=session_id)


class _JsonFormatter(jsonlogger.JsonFormatter):
    """
    session_id, module, level 필드를 자동 추가하는 JSON 포맷터입니다.
    """

    def __init__(self, session_id: str = "") -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            json_ensure_ascii=False,
        )
        self._session_id = session_id

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["session_id"] = self._session_id
        log_record["module"] = record.name
        log_record["level"] = record.levelname


class _TextFormatter(logging.Formatter):
    """
    session_id 앞 8자리를 접두어로 포함하는 텍스트 포맷터입니다.
    """

    def __init__(self, session_id: str = "") -> None:
        super().__init__(
            fmt=f"%(asctime)s [{session_id[:8] if session_id else 'no-sid'}] "
                f"%(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class StructuredLogger:
    """
    모듈별 로거를 반환하는 팩토리 클래스입니다.

    표준 logging.Logger를 그대로 반환하므로 기존 logging API와 호환됩니다.
    """

    @staticmethod
    def get(name: str) -> logging.Logger:
        """
        지정된 이름의 로거를 반환합니다.

        파라미터:
            name: 모듈/컴포넌트 이름 (일반적으로 __name__ 사용)
        """
        return logging.getLogger(name)

    @staticmethod
    def get_session_id() -> str:
        """현재 세션 ID를 반환합니다."""
        return _SESSION_ID
