from typing import Any

from .calculator import DEFAULT_POLICY
from .codec import build_codec
from .config import settings
from .database import Base, engine
from .gateway import MockPaymentGateway
from .routes import router


def init_fees_module(state: Any) -> None:
    Base.metadata.create_all(bind=engine)
    state.codec = build_codec(settings)
    state.gateway = MockPaymentGateway(latency_seconds=settings.gateway_latency_ms / 1000)
    state.late_fee_policy = DEFAULT_POLICY


__all__ = ["router", "init_fees_module"]
