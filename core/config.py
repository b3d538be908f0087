"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Optional


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    namespace: str = "payment-tracker"


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Payment Status Tracker")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # 日志配置
    LOG_LEVEL: Optional[str] = Field(default=None, description="覆盖默认日志级别 (DEBUG/INFO/...)")
    LOG_JSON: Optional[bool] = Field(default=None, description="强制 JSON 渲染；默认非 DEBUG 时启用")

    # 推送通道（Redis Pub/Sub）
    redis: RedisSettings = Field(default_factory=RedisSettings)

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip().upper()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"prod", "production"}


settings = Settings()
