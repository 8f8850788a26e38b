"""
VoiceToText 설정 관리 모듈입니다.

역할:
- YAML 설정 파일을 로드하고 Pydantic 스키마로 유효성 검증
- 환경변수 오버라이드 지원 (접두사: VTT_)
- dot-notation 기반 설정값 조회 (예: "engine.model_path")

사용 예시:
    >>> manager = ConfigManager()
    >>> config = manager.load("config.yaml")
    >>> model_path = manager.get("engine.model_path")
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from voicetotext.config.schema import AppConfig

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 환경변수 오버라이드 접두사
ENV_PREFIX = "VTT_"


class ConfigLoadError(Exception):
    """설정 파일 로드 중 발생하는 에러의 기본 클래스입니다."""
    pass


class ConfigValidationError(ConfigLoadError):
    """설정 스키마 검증 실패 시 발생하는 에러입니다."""
    pass


class ConfigFileNotFoundError(ConfigLoadError):
    """설정 파일을 찾을 수 없을 때 발생하는 에러입니다."""
    pass


class ConfigManager:
    """
    YAML 설정 파일을 로드하고 관리하는 매니저 클래스입니다.

    역할:
    - YAML 파일 파싱 및 Pydantic 유효성 검증
    - 환경변수 오버라이드 (VTT_ 접두사)
    - dot-notation 설정값 조회

    사용 예시:
        >>> manager = ConfigManager()
        >>> config = manager.load("config.yaml")
        >>> print(manager.get("streaming.buffer_duration_sec"))
        3.0
    """

    def __init__(self) -> None:
        """ConfigManager를 초기화합니다."""
        # 현재 활성 설정 객체 (로드 전에는 None)
        self._config: Optional[AppConfig] = None
        # 설정 파일 경로 (파일에서 로드한 경우에만 설정됨)
        self._config_filepath: Optional[Path] = None
        # 설정 접근 시 스레드 안전성을 보장하기 위한 락
        self._lock: threading.RLock = threading.RLock()

        logger.debug("ConfigManager 인스턴스 생성 완료")

    @property
    def config(self) -> Optional[AppConfig]:
        """현재 활성 설정 객체를 반환합니다."""
        with self._lock:
            return self._config

    @property
    def config_filepath(self) -> Optional[Path]:
        """마지막으로 로드한 설정 파일 경로를 반환합니다."""
        return self._config_filepath

    def load(self, filepath: str | Path) -> AppConfig:
        """
        YAML 설정 파일을 로드하고 Pydantic 스키마로 검증합니다.

        처리 순서:
        1. 파일 존재 여부 확인
        2. YAML 파싱
        3. 환경변수 오버라이드 적용
        4. Pydantic 스키마 검증
        5. 검증 통과 시 활성 설정으로 교체

        파라미터:
            filepath (str | Path): YAML 설정 파일 경로

        반환값:
            AppConfig: 검증 완료된 설정 객체

        에러:
            ConfigFileNotFoundError: 파일이 존재하지 않을 때
            ConfigValidationError: 스키마 검증 실패 시
            ConfigLoadError: YAML 파싱 실패 등 기타 에러
        """
        filepath = Path(filepath)
        logger.info(f"설정 파일 로드 시작: {filepath}")

        # 1단계: 파일 존재 여부 확인
        if not filepath.exists():
            error_message = f"설정 파일을 찾을 수 없습니다: {filepath}"
            logger.error(error_message)
            raise ConfigFileNotFoundError(error_message)

        try:
            # 2단계: YAML 파일 파싱
            raw_config = self._parse_yaml_file(filepath)
            logger.debug(f"YAML 파싱 완료: {len(raw_config)} 개 최상위 키")

            # 3~4단계: 환경변수 오버라이드 후 검증
            validated_config = self._build_config(raw_config)

            # 5단계: 활성 설정으로 교체 (스레드 안전)
            with self._lock:
                self._config = validated_config
                self._config_filepath = filepath

            logger.info(
                f"설정 로드 성공: "
                f"log_level={validated_config.system.log_level}, "
                f"model={validated_config.engine.model_path}, "
                f"language={validated_config.recognizer.language}"
            )
            return validated_config

        except ConfigLoadError:
            # ConfigLoadError 하위 클래스는 그대로 전파
            raise

        except Exception as unexpected_error:
            error_message = f"설정 로드 중 예상치 못한 에러: {unexpected_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from unexpected_error

    def load_defaults(self) -> AppConfig:
        """
        설정 파일 없이 기본값과 환경변수 오버라이드만으로 설정을 구성합니다.

        반환값:
            AppConfig: 검증 완료된 설정 객체

        에러:
            ConfigValidationError: 환경변수 값이 스키마를 위반할 때
        """
        logger.info("설정 파일 없이 기본 설정 사용")
        validated_config = self._build_config({})
        with self._lock:
            self._config = validated_config
            self._config_filepath = None
        return validated_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        dot-notation으로 설정값을 조회합니다.

        중첩된 설정값에 접근할 때 점(.)으로 구분된 키를 사용합니다.
        예: "engine.model_path" -> config.engine.model_path

        파라미터:
            key (str): dot-notation 설정 키 (예: "recognizer.language")
            default (Any): 키가 존재하지 않을 때 반환할 기본값

        반환값:
            Any: 설정값 또는 기본값

        에러:
            RuntimeError: 설정이 로드되지 않은 상태에서 호출 시
        """
        with self._lock:
            # 설정이 로드되었는지 확인
            if self._config is None:
                error_message = "설정이 아직 로드되지 않았습니다. load()를 먼저 호출하세요."
                logger.error(error_message)
                raise RuntimeError(error_message)

            # dot-notation 키를 분할하여 순차적으로 탐색
            current_value: Any = self._config

            for part in key.split("."):
                if hasattr(current_value, part):
                    current_value = getattr(current_value, part)
                elif isinstance(current_value, dict) and part in current_value:
                    current_value = current_value[part]
                else:
                    logger.debug(f"설정 키 '{key}'에서 '{part}' 부분을 찾을 수 없음, 기본값 반환")
                    return default

            return current_value

    def validate_schema(self, raw_config: dict) -> bool:
        """
        딕셔너리 데이터가 AppConfig 스키마를 만족하는지 검증합니다.

        파라미터:
            raw_config (dict): 검증할 설정 딕셔너리

        반환값:
            bool: 검증 통과 시 True, 실패 시 False
        """
        try:
            AppConfig(**raw_config)
            logger.debug("스키마 검증 통과")
            return True
        except ValidationError as validation_error:
            logger.warning(f"스키마 검증 실패: {validation_error}")
            return False

    # =========================================================================
    # 내부 메서드 (private)
    # =========================================================================

    def _build_config(self, raw_config: dict) -> AppConfig:
        """환경변수 오버라이드를 적용한 뒤 스키마 검증을 수행합니다."""
        raw_config = self._apply_env_overrides(raw_config)
        return self._validate_config(raw_config)

    def _parse_yaml_file(self, filepath: Path) -> dict:
        """
        YAML 파일을 읽어서 딕셔너리로 파싱합니다.

        파라미터:
            filepath (Path): YAML 파일 경로

        반환값:
            dict: 파싱된 설정 딕셔너리

        에러:
            ConfigLoadError: 파일 읽기 또는 파싱 실패 시
        """
        try:
            with open(filepath, "r", encoding="utf-8") as config_file:
                raw_data = yaml.safe_load(config_file)

            # YAML 파일이 비어있으면 모든 섹션을 기본값으로 사용
            if raw_data is None:
                logger.warning(f"설정 파일이 비어있습니다: {filepath}")
                return {}

            if not isinstance(raw_data, dict):
                error_message = f"설정 파일의 최상위 구조가 딕셔너리가 아닙니다: {type(raw_data)}"
                raise ConfigLoadError(error_message)

            return raw_data

        except yaml.YAMLError as yaml_error:
            error_message = f"YAML 파싱 에러: {yaml_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from yaml_error

        except OSError as file_error:
            error_message = f"파일 읽기 에러: {file_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from file_error

    def _apply_env_overrides(self, raw_config: dict) -> dict:
        """
        VTT_ 접두사 환경변수로 설정값을 오버라이드합니다.

        환경변수 매핑 규칙:
        - 접두사: VTT_
        - 첫 번째 언더스코어가 섹션 구분자, 나머지는 필드 이름
        - 예: VTT_ENGINE_MODEL_PATH -> engine.model_path
        - 예: VTT_STREAMING_BUFFER_DURATION_SEC -> streaming.buffer_duration_sec

        파라미터:
            raw_config (dict): 환경변수 적용 전 설정 딕셔너리

        반환값:
            dict: 환경변수가 적용된 설정 딕셔너리
        """
        override_count = 0

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue

            # 예: VTT_ENGINE_MODEL_PATH -> engine_model_path
            config_path = env_key[len(ENV_PREFIX):].lower()
            path_parts = config_path.split("_", 1)

            if len(path_parts) < 2 or not path_parts[1]:
                logger.debug(f"환경변수 '{env_key}' 무시 (키 경로 부족)")
                continue

            section_name, field_name = path_parts

            section = raw_config.get(section_name)
            if section is None:
                section = {}
                raw_config[section_name] = section
            elif not isinstance(section, dict):
                logger.warning(f"환경변수 '{env_key}' 무시 ('{section_name}' 섹션이 딕셔너리가 아님)")
                continue

            section[field_name] = self._convert_env_value(env_value)
            logger.info(f"환경변수 오버라이드: {env_key} -> {section_name}.{field_name}")
            override_count += 1

        if override_count > 0:
            logger.info(f"환경변수 오버라이드 적용 완료: {override_count}건")

        return raw_config

    def _convert_env_value(self, value: str) -> Any:
        """
        환경변수 문자열 값을 적절한 Python 타입으로 변환합니다.

        변환 규칙:
        - "true"/"false" (대소문자 무관) -> bool
        - 정수 형식 문자열 -> int
        - 부동소수점 형식 문자열 -> float
        - 그 외 -> str (원본 유지)
        """
        if value.lower() == "true":
            return True
        if value.lower() == "false":
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _validate_config(self, raw_config: dict) -> AppConfig:
        """
        딕셔너리를 Pydantic AppConfig 모델로 검증하고 변환합니다.

        에러:
            ConfigValidationError: Pydantic 검증 실패 시
        """
        try:
            return AppConfig(**raw_config)

        except ValidationError as validation_error:
            # 검증 에러 상세 내용을 로그에 기록
            error_details = validation_error.errors()
            for error_detail in error_details:
                field_path = " -> ".join(str(loc) for loc in error_detail["loc"])
                logger.error(
                    f"설정 검증 실패 - 필드: {field_path}, "
                    f"에러: {error_detail['msg']}, "
                    f"입력값: {error_detail.get('input', 'N/A')}"
                )

            error_message = f"설정 스키마 검증 실패: {len(error_details)}개 에러 발생"
            raise ConfigValidationError(error_message) from validation_error
