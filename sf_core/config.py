"""
SettleFlow Configuration Management
遵循约束：环境变量前缀 SF__
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, validator
from functools import lru_cache


SUPPORTED_COURIERS = ("brt", "dhl", "gls")


@dataclass(frozen=True)
class CourierConfig:
    """单个快递承运商的接入配置"""
    name: str
    api_url: str
    api_key: str


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SF__",
        case_sensitive=False
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="settleflow")
    db_user: str = Field(default="settleflow")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)
    db_url: Optional[str] = Field(default=None)  # 完整连接串，优先于上面的分项配置
    db_slow_query_ms: int = Field(default=100)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api/sf/v1")
    api_title: str = Field(default="SettleFlow API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)
    admin_api_key: Optional[str] = Field(default=None)

    # Security（店面签发的 JWT）
    jwt_secret: str = Field(default="change-me-in-production")
    jwt_algorithm: str = Field(default="HS256")
    jwt_audience: Optional[str] = Field(default="authenticated")

    # Celery
    celery_broker_url: str = Field(default="redis://localhost:6379/0")
    celery_result_backend: str = Field(default="redis://localhost:6379/1")
    celery_task_default_queue: str = Field(default="sf_default")
    celery_timezone: str = Field(default="Europe/Rome")

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Stripe
    stripe_secret_key: Optional[str] = Field(default=None)
    stripe_webhook_secret: Optional[str] = Field(default=None)
    stripe_api_base: str = Field(default="https://api.stripe.com")
    stripe_signature_tolerance: int = Field(default=300)

    # 通知
    telegram_bot_token: Optional[str] = Field(default=None)
    telegram_chat_id: Optional[str] = Field(default=None)
    telegram_api_base: str = Field(default="https://api.telegram.org")
    order_email_endpoint: Optional[str] = Field(default=None)
    order_email_api_key: Optional[str] = Field(default=None)
    brand_name: str = Field(default="Avenue M.")

    # 快递
    brt_api_url: str = Field(default="https://api.brt.it/v1")
    brt_api_key: Optional[str] = Field(default=None)
    dhl_api_url: str = Field(default="https://api.dhl.com/v1")
    dhl_api_key: Optional[str] = Field(default=None)
    gls_api_url: str = Field(default="https://api.gls-italy.com/v1")
    gls_api_key: Optional[str] = Field(default=None)
    default_courier: str = Field(default="brt")
    courier_auto_dispatch_enabled: bool = Field(default=False)
    courier_dispatch_interval_seconds: int = Field(default=900)
    courier_dispatch_grace_minutes: int = Field(default=30)
    courier_dispatch_batch_size: int = Field(default=20)

    sender_name: str = Field(default="Avenue M.")
    sender_address: str = Field(default="Via Example 123")
    sender_city: str = Field(default="Gallarate")
    sender_postal_code: str = Field(default="21013")
    sender_country: str = Field(default="IT")

    parcel_default_weight_kg: float = Field(default=1.0)
    parcel_length_cm: int = Field(default=30)
    parcel_width_cm: int = Field(default=20)
    parcel_height_cm: int = Field(default=10)

    # 编码生成
    order_number_prefix: str = Field(default="MF")
    gift_card_code_length: int = Field(default=14)
    gift_card_validity_days: int = Field(default=365)
    gift_card_default_template: str = Field(default="elegant")
    code_generation_max_attempts: int = Field(default=10)

    # 推荐奖励
    referral_reward_amount: Decimal = Field(default=Decimal("5.00"))
    referral_minimum_order: Decimal = Field(default=Decimal("35.00"))
    referral_max_per_ip_daily: int = Field(default=3)
    referral_first_order_discount_percent: int = Field(default=15)

    # 超时（秒）
    side_effect_timeout_seconds: float = Field(default=10.0)
    http_timeout_seconds: float = Field(default=15.0)

    @validator("api_prefix")
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api/sf/"):
            raise ValueError("API prefix must start with /api/sf/")
        return v

    @validator("gift_card_code_length")
    def validate_gift_card_code_length(cls, v):
        """礼品卡码长度限制在 12-16 位，便于手工输入"""
        if not 12 <= v <= 16:
            raise ValueError("Gift card code length must be between 12 and 16")
        return v

    @validator("default_courier")
    def validate_default_courier(cls, v):
        v = v.lower()
        if v not in SUPPORTED_COURIERS:
            raise ValueError(f"Unsupported courier: {v}")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        if self.db_url:
            return self.db_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        if self.db_url:
            return self.db_url.replace("+asyncpg", "").replace("+aiosqlite", "")
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def get_courier_config(self, name: str) -> Optional[CourierConfig]:
        """获取承运商配置

        Args:
            name: 承运商名称（brt/dhl/gls）

        Returns:
            配置对象；承运商未知或未配置密钥时返回 None
        """
        name = (name or "").lower()
        if name not in SUPPORTED_COURIERS:
            return None
        api_key = getattr(self, f"{name}_api_key")
        if not api_key:
            return None
        return CourierConfig(name=name, api_url=getattr(self, f"{name}_api_url"), api_key=api_key)


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
