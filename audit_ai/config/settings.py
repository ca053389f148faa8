"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AUDIT_AI_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """客户端配置（使用 Pydantic）。"""

    # ---- 后端 API ----
    api_base_url: str = Field(
        default="http://localhost:5000",
        description="后端 REST API 地址，自动补全 /api 后缀",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="普通请求超时时间（秒）")
    stream_idle_timeout: float = Field(
        default=60.0,
        ge=1.0,
        description="流式响应两次数据之间的最长等待时间（秒），超时按 onError 处理",
    )

    # ---- 认证 ----
    access_token: Optional[str] = Field(default=None, description="会话 access token（可选）")
    user_id: Optional[str] = Field(default=None, description="当前用户 ID（可选）")
    max_token_length: int = Field(
        default=4000,
        ge=16,
        description="access token 最大长度，超出视为损坏并拒绝请求",
    )

    # ---- 附件 ----
    max_image_bytes: int = Field(default=5 * 1024 * 1024, ge=1, description="图片附件大小上限（字节）")
    spreadsheet_extensions: List[str] = Field(
        default_factory=lambda: [".csv", ".xlsx", ".xls"],
        description="允许导入的表格文件扩展名",
    )

    # ---- 对话 ----
    supersede_active_stream: bool = Field(
        default=False,
        description="发送新消息时是否取消仍在进行中的流式回复",
    )

    # ---- 语音 ----
    voice_dispatch_delay: float = Field(default=0.5, ge=0.0, description="语音识别结果自动发送前的延迟（秒）")
    speech_lang: str = Field(default="en-US", description="语音识别/合成语言")
    preferred_voice_names: List[str] = Field(
        default_factory=lambda: ["Female", "Samantha"],
        description="优先选用的语音名称关键字",
    )

    # ---- 主动监控 ----
    monitor_interval_seconds: float = Field(default=30.0, gt=0, description="主动监控检查间隔（秒）")
    notification_tag: str = Field(default="audit-ai", description="通知去重 tag")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        base = (v or "").strip().rstrip("/")
        if not base:
            raise ValueError("api_base_url must not be empty")
        return base if base.endswith("/api") else f"{base}/api"

    @field_validator("spreadsheet_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        out = []
        for ext in v:
            ext = ext.strip().lower()
            if ext and not ext.startswith("."):
                ext = "." + ext
            if ext:
                out.append(ext)
        return out

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
