class FeeError(Exception):
    pass


class ValidationError(FeeError):
    pass


class NotFoundError(FeeError):
    pass


class ConflictError(FeeError):
    pass


class PaymentReconciliationError(FeeError):
    """The gateway captured money but the ledger could not be updated.

    Carries the transaction id and whether the compensating refund went
    through, so operators can reconcile by hand when it did not.
    """

    def __init__(self, message: str, *, fee_id: str, transaction_id: str | None, refunded: bool):
        super().__init__(message)
        self.fee_id = fee_id
        self.transaction_id = transaction_id
        self.refunded = refunded
