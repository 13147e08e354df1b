"""Payment gateway abstraction and the in-process mock used in development.

The mock mimics a hosted card processor closely enough to exercise the fee
engine's failure paths: declines are probabilistic and depend on the amount,
and captured transactions are kept in a per-instance table so they can be
verified and refunded later. That table lives only as long as the gateway
object; a real integration has to persist it on the processor side.
"""

import logging
import random
import threading
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    success: bool
    transaction_id: str | None
    amount: Decimal
    timestamp: datetime
    error_message: str | None = None
    # Set when the processor did not answer: the charge may still have gone through.
    uncertain: bool = False


class PaymentGateway(ABC):
    @abstractmethod
    def process_payment(
        self,
        amount: Decimal,
        currency: str = "INR",
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentOutcome:
        raise NotImplementedError

    @abstractmethod
    def verify_payment(self, transaction_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def refund_payment(self, transaction_id: str, amount: Decimal | None = None) -> bool:
        raise NotImplementedError


@dataclass
class _Transaction:
    transaction_id: str
    amount: Decimal
    currency: str
    description: str | None
    metadata: dict[str, str]
    success: bool
    created_at: datetime
    refunded_amount: Decimal | None = None
    error_message: str | None = None


class MockPaymentGateway(PaymentGateway):
    HIGH_AMOUNT_THRESHOLD = Decimal("50000")
    LOW_AMOUNT_THRESHOLD = Decimal("1.00")
    HIGH_AMOUNT_FAILURE_RATE = 0.20
    LOW_AMOUNT_FAILURE_RATE = 0.10
    DEFAULT_FAILURE_RATE = 0.02
    REFUND_FAILURE_RATE = 0.02

    def __init__(self, *, random_source: random.Random | None = None, latency_seconds: float = 0.1):
        self._random = random_source or random.Random()
        self._latency = latency_seconds
        self._transactions: dict[str, _Transaction] = {}
        self._lock = threading.Lock()

    def failure_rate(self, amount: Decimal) -> float:
        if amount > self.HIGH_AMOUNT_THRESHOLD:
            return self.HIGH_AMOUNT_FAILURE_RATE
        if amount < self.LOW_AMOUNT_THRESHOLD:
            return self.LOW_AMOUNT_FAILURE_RATE
        return self.DEFAULT_FAILURE_RATE

    def process_payment(
        self,
        amount: Decimal,
        currency: str = "INR",
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentOutcome:
        logger.info(f"Processing mock payment: {amount} {currency}")
        now = datetime.now(timezone.utc)
        if amount <= 0:
            return PaymentOutcome(
                success=False,
                transaction_id=None,
                amount=Decimal("0"),
                timestamp=now,
                error_message="Payment amount must be greater than zero",
            )

        self._simulate_latency()
        transaction_id = self._generate_transaction_id()
        declined = self._random.random() < self.failure_rate(amount)
        error_message = "Payment failed due to insufficient funds or network error" if declined else None

        with self._lock:
            self._transactions[transaction_id] = _Transaction(
                transaction_id=transaction_id,
                amount=amount,
                currency=currency,
                description=description,
                metadata=dict(metadata or {}),
                success=not declined,
                created_at=now,
                error_message=error_message,
            )

        if declined:
            logger.warning(f"Mock payment declined. Transaction ID: {transaction_id}")
            return PaymentOutcome(
                success=False,
                transaction_id=transaction_id,
                amount=Decimal("0"),
                timestamp=now,
                error_message=error_message,
            )

        logger.info(f"Mock payment successful. Transaction ID: {transaction_id}")
        return PaymentOutcome(success=True, transaction_id=transaction_id, amount=amount, timestamp=now)

    def verify_payment(self, transaction_id: str) -> bool:
        logger.info(f"Verifying mock payment: {transaction_id}")
        with self._lock:
            transaction = self._transactions.get(transaction_id)
        return transaction is not None and transaction.success

    def refund_payment(self, transaction_id: str, amount: Decimal | None = None) -> bool:
        logger.info(f"Processing mock refund: {transaction_id}, amount: {amount}")
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None or not transaction.success:
                return False
            if transaction.refunded_amount is not None:
                return False
            refund_amount = transaction.amount if amount is None else amount
            if refund_amount <= 0 or refund_amount > transaction.amount:
                return False

        self._simulate_latency()
        if self._random.random() < self.REFUND_FAILURE_RATE:
            logger.warning(f"Mock refund failed for {transaction_id}")
            return False

        with self._lock:
            # Another refund may have landed while the processor was answering.
            if transaction.refunded_amount is not None:
                return False
            transaction.refunded_amount = refund_amount
        logger.info(f"Mock refund of {refund_amount} completed for {transaction_id}")
        return True

    def _simulate_latency(self) -> None:
        if self._latency > 0:
            time.sleep(self._latency)

    @staticmethod
    def _generate_transaction_id() -> str:
        return f"mock_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def charge_with_timeout(
    gateway: PaymentGateway,
    *,
    amount: Decimal,
    currency: str,
    description: str | None,
    metadata: dict[str, str] | None,
    timeout: float,
) -> PaymentOutcome:
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="payment-gateway")
    future = executor.submit(gateway.process_payment, amount, currency, description, metadata)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.error(
            f"Payment gateway timed out after {timeout}s for {amount} {currency} "
            f"({metadata}); charge state is unknown and may have succeeded"
        )
        reason = "Payment gateway timed out; the charge could not be confirmed"
    except Exception as exc:
        logger.error(
            f"Payment gateway unreachable for {amount} {currency} ({metadata}): {exc}; "
            "charge state is unknown"
        )
        reason = "Payment gateway unavailable; the charge could not be confirmed"
    finally:
        executor.shutdown(wait=False)
    return PaymentOutcome(
        success=False,
        transaction_id=None,
        amount=Decimal("0"),
        timestamp=datetime.now(timezone.utc),
        error_message=reason,
        uncertain=True,
    )
