"""
설정 모듈 패키지

- schema: Pydantic v2 설정 스키마 (AppConfig 및 섹션 모델)
- config_manager: YAML 로드, VTT_ 환경변수 오버라이드, dot-notation 조회
"""
