"""
应用配置管理
支持：
- .env 文件
- AWS Parameter Store
- AWS Secrets Manager 注入的数据库环境变量
"""

import os
import urllib.parse
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置"""

    # ===== 基础环境 =====
    ENVIRONMENT: str = Field(default="development", description="运行环境")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别")

    # ===== AWS =====
    AWS_REGION: str = Field(default="us-west-2", description="AWS Region")
    USE_AWS_PARAMETER_STORE: bool = Field(
        default=False, description="是否从 AWS Parameter Store 加载配置"
    )
    PARAMETER_STORE_PATH: str = Field(
        default="/hangar/database", description="Parameter Store 路径前缀"
    )

    # ===== Database =====
    # 方式一：完整 DATABASE_URL（本地 / Parameter Store）
    DATABASE_URL: str = Field(default="", description="PostgreSQL 数据库连接 URL")

    # 方式二：Secrets Manager 注入（ECS / EKS 推荐）
    DB_HOST: str = Field(default="", description="数据库主机")
    DB_PORT: str = Field(default="5432", description="数据库端口")
    DB_USERNAME: str = Field(default="", description="数据库用户名")
    DB_PASSWORD: str = Field(default="", description="数据库密码")
    DB_NAME: str = Field(default="postgres", description="数据库名")

    DB_POOL_SIZE: int = Field(default=20, description="连接池大小")
    DB_MAX_OVERFLOW: int = Field(default=40, description="连接池最大溢出数")

    # ===== Builds =====
    TEMP_BUILD_TTL_HOURS: int = Field(default=24, ge=1, description="临时 Build 有效期（小时）")
    TEMP_TOKEN_BYTES: int = Field(default=24, ge=16, description="临时链接 token 随机字节数")
    PUBLIC_BASE_URL: str = Field(default="", description="分享链接前缀，留空则返回相对路径")

    # ===== 图片资产 =====
    IMAGE_ASSET_BUCKET: str = Field(default="", description="已审核图片所在 S3 bucket")
    IMAGE_ASSET_PREFIX: str = Field(default="build-images", description="图片对象 key 前缀")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# 全局配置实例（懒加载）
_settings: Optional[Settings] = None


def _build_database_url(settings: Settings) -> str:
    encoded_password = urllib.parse.quote(settings.DB_PASSWORD, safe="")
    return (
        f"postgresql://{settings.DB_USERNAME}:{encoded_password}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
        f"?sslmode=require"
    )


def get_settings() -> Settings:
    """获取配置实例（懒加载）"""
    global _settings

    if _settings is not None:
        return _settings

    print("[CONFIG] 初始化 Settings（env / .env）")
    settings = Settings()

    # ===== 环境约束 =====
    if settings.ENVIRONMENT in ("production", "staging"):
        if not settings.USE_AWS_PARAMETER_STORE:
            raise RuntimeError(
                f"[CONFIG ERROR] ENVIRONMENT={settings.ENVIRONMENT} "
                f"必须启用 USE_AWS_PARAMETER_STORE=true，禁止使用 .env"
            )

    # ===== Parameter Store =====
    if settings.USE_AWS_PARAMETER_STORE:
        print("[CONFIG] 尝试从 AWS Parameter Store 加载数据库配置")

        from hangar.core.aws_params import load_parameters_from_aws_sync

        params = load_parameters_from_aws_sync(
            path=settings.PARAMETER_STORE_PATH,
            region=settings.AWS_REGION,
        )

        if not params:
            raise RuntimeError("[CONFIG ERROR] 未能从 AWS Parameter Store 加载数据库配置")

        if params.get("database_url"):
            settings.DATABASE_URL = params["database_url"]
            print("[CONFIG] DATABASE_URL 已从 Parameter Store 设置")
        if params.get("image_asset_bucket"):
            settings.IMAGE_ASSET_BUCKET = params["image_asset_bucket"]

    # ===== Secrets Manager 构建 DATABASE_URL（优先级最高）=====
    if settings.DB_HOST and settings.DB_PASSWORD:
        print("[CONFIG] 检测到 Secrets Manager 注入的 DB_HOST / DB_PASSWORD")
        settings.DATABASE_URL = _build_database_url(settings)

    # ===== 最终兜底 / 校验 =====
    if not settings.DATABASE_URL:
        # 生产 / 预发环境禁止 fallback
        if settings.ENVIRONMENT in ("production", "staging"):
            raise RuntimeError(
                "[CONFIG ERROR] DATABASE_URL 未配置。"
                "生产 / 预发环境必须通过 Parameter Store 或 Secrets Manager 提供"
            )

        base_dir = Path(__file__).resolve().parent.parent.parent
        env_file = base_dir / f".env.{settings.ENVIRONMENT}"

        if not env_file.exists():
            raise RuntimeError(
                f"[CONFIG ERROR] DATABASE_URL 未配置，且本地配置文件不存在：{env_file}"
            )

        print(f"[CONFIG WARNING] 使用本地配置文件 {env_file}")

        from dotenv import load_dotenv

        load_dotenv(env_file, override=True)

        if os.getenv("DATABASE_URL"):
            settings.DATABASE_URL = os.getenv("DATABASE_URL", "")
        else:
            # 只补字段，不重建 Settings
            settings.DB_HOST = settings.DB_HOST or os.getenv("DB_HOST", "")
            settings.DB_PORT = settings.DB_PORT or os.getenv("DB_PORT", "5432")
            settings.DB_USERNAME = settings.DB_USERNAME or os.getenv("DB_USERNAME", "")
            settings.DB_PASSWORD = settings.DB_PASSWORD or os.getenv("DB_PASSWORD", "")
            settings.DB_NAME = settings.DB_NAME or os.getenv("DB_NAME", "postgres")

            if not (settings.DB_HOST and settings.DB_USERNAME and settings.DB_PASSWORD):
                raise RuntimeError(
                    "[CONFIG ERROR] 本地 .env 缺少 DB_HOST / DB_USERNAME / DB_PASSWORD"
                )
            settings.DATABASE_URL = _build_database_url(settings)

        print("[CONFIG] DATABASE_URL 已由本地 .env fallback 构建")

    _settings = settings
    return _settings


def reset_settings() -> None:
    """清除缓存的配置（测试使用）"""
    global _settings
    _settings = None
