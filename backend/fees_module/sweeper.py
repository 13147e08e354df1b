import asyncio
import logging
from typing import Any

from .database import SessionLocal
from .services import FeeService


logger = logging.getLogger(__name__)


def run_late_fee_sweep(state: Any) -> int:
    db = SessionLocal()
    try:
        service = FeeService(db, codec=state.codec, gateway=state.gateway, policy=state.late_fee_policy)
        return service.calculate_late_fees()
    finally:
        db.close()


async def late_fee_sweep_loop(state: Any, interval_minutes: int) -> None:
    logger.info(f"Late fee sweep scheduled every {interval_minutes} minutes")
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            updated = await asyncio.to_thread(run_late_fee_sweep, state)
            logger.info(f"Scheduled late fee sweep updated {updated} records")
        except Exception as exc:
            logger.error(f"Scheduled late fee sweep failed: {exc}")
