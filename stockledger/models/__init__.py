# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    MovementKind, MovementAction,

    # Catalog & counterparties
    Product, Customer, Supplier,

    # Transactions
    Sale, SaleLine, Purchase, PurchaseLine,

    # Ledger
    StockMovement,

    # Materialized rollups
    DailyProductAggregate, DailyCustomerAggregate,

    # Audit
    AuditLog,
)

__all__ = [
    "MovementKind", "MovementAction",
    "Product", "Customer", "Supplier",
    "Sale", "SaleLine", "Purchase", "PurchaseLine",
    "StockMovement",
    "DailyProductAggregate", "DailyCustomerAggregate",
    "AuditLog",
]

all_models = True
