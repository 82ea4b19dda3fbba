"""Domain errors raised by the ledger and the transaction layer.

Routers translate these into HTTP responses; the engine itself never
swallows them.
"""
from decimal import Decimal


class LedgerError(Exception):
    """Base class for inventory ledger failures."""


class NotFoundError(LedgerError):
    """A referenced record does not exist."""


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"product not found: {product_id}")


class TransactionNotFoundError(NotFoundError):
    def __init__(self, kind: str, transaction_id: str):
        self.kind = kind
        self.transaction_id = transaction_id
        super().__init__(f"{kind} not found: {transaction_id}")


class CounterpartyNotFoundError(NotFoundError):
    def __init__(self, kind: str, counterparty_id: str):
        self.kind = kind
        self.counterparty_id = counterparty_id
        super().__init__(f"{kind} not found: {counterparty_id}")


class InsufficientStockError(LedgerError):
    """A sale would take one or more products below zero.

    ``shortfalls`` holds one dict per failing line:
    ``{"product_id", "requested", "available"}``.
    """

    def __init__(self, shortfalls: list[dict]):
        self.shortfalls = shortfalls
        parts = ", ".join(
            f"{s['product_id']} (requested {s['requested']}, available {s['available']})"
            for s in shortfalls
        )
        super().__init__(f"insufficient stock: {parts}")

    def as_detail(self) -> list[dict]:
        return [
            {k: (str(v) if isinstance(v, Decimal) else v) for k, v in s.items()}
            for s in self.shortfalls
        ]


class UnderspecifiedCostWarning(UserWarning):
    """A purchase carried neither a unit cost nor a derivable amount/quantity
    ratio, so it adds quantity but no FIFO cost layer."""
