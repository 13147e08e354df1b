import os
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Settings:
    jwt_secret: str = os.getenv("FEES_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("FEES_JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("FEES_JWT_EXP_MINUTES", "60"))
    encryption_key: str = os.getenv("FEES_ENCRYPTION_KEY", "")
    codec: str = os.getenv("FEES_CODEC", "aes-fixed-iv")
    currency: str = os.getenv("FEES_CURRENCY", "INR")
    late_fee_base: Decimal = Decimal(os.getenv("FEES_LATE_FEE_BASE", "100"))
    late_fee_daily: Decimal = Decimal(os.getenv("FEES_LATE_FEE_DAILY", "10"))
    late_fee_max: Decimal = Decimal(os.getenv("FEES_LATE_FEE_MAX", "500"))
    gateway_timeout_seconds: float = float(os.getenv("FEES_GATEWAY_TIMEOUT_SECONDS", "5"))
    gateway_latency_ms: int = int(os.getenv("FEES_GATEWAY_LATENCY_MS", "100"))
    persist_retries: int = int(os.getenv("FEES_PERSIST_RETRIES", "3"))
    sweep_interval_minutes: int = int(os.getenv("FEES_SWEEP_INTERVAL_MINUTES", "0"))

    @property
    def cipher_secret(self) -> str:
        # Amounts are keyed off the JWT secret unless a dedicated key is set.
        return self.encryption_key or self.jwt_secret


settings = Settings()
