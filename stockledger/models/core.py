from sqlalchemy import (
    String, ForeignKey, Numeric, Enum, Text, DateTime, Date, Integer, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from stockledger.db import Base
from stockledger.models.common import IdMixin, TSMMixin, utcnow

QTY = Numeric(14, 4)
MONEY = Numeric(14, 4)

# ── Enums ───────────────────────────────────────────────────────────────────
class MovementKind(PyEnum):
    PURCHASE = "purchase"
    SALE = "sale"

class MovementAction(PyEnum):
    APPLY = "apply"
    REVERT = "revert"  # offsets an earlier apply, never edits it

# ── Catalog & counterparties ────────────────────────────────────────────────
class Product(Base, IdMixin, TSMMixin):
    __tablename__ = "product"
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str | None] = mapped_column(String(20))  # pcs, kg, m ...
    current_stock: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"))
    sale_price: Mapped[Decimal | None] = mapped_column(MONEY)
    sale_currency: Mapped[str | None] = mapped_column(String(3))

class Customer(Base, IdMixin, TSMMixin):
    __tablename__ = "customer"
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))

class Supplier(Base, IdMixin, TSMMixin):
    __tablename__ = "supplier"
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))

# ── Transactions (documents that produce movements) ─────────────────────────
class Sale(Base, IdMixin, TSMMixin):
    __tablename__ = "sale"
    customer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("customer.id"))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    currency: Mapped[str] = mapped_column(String(3))
    note: Mapped[str | None] = mapped_column(Text)
    lines: Mapped[list["SaleLine"]] = relationship(
        back_populates="sale", cascade="all, delete-orphan", order_by="SaleLine.position")

class SaleLine(Base, IdMixin):
    __tablename__ = "sale_line"
    sale_id: Mapped[str] = mapped_column(String(36), ForeignKey("sale.id"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id"))
    quantity: Mapped[Decimal] = mapped_column(QTY)
    unit_price: Mapped[Decimal | None] = mapped_column(MONEY)
    amount: Mapped[Decimal | None] = mapped_column(MONEY)
    sale: Mapped[Sale] = relationship(back_populates="lines")

class Purchase(Base, IdMixin, TSMMixin):
    __tablename__ = "purchase"
    supplier_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("supplier.id"))
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    currency: Mapped[str] = mapped_column(String(3))
    note: Mapped[str | None] = mapped_column(Text)
    lines: Mapped[list["PurchaseLine"]] = relationship(
        back_populates="purchase", cascade="all, delete-orphan", order_by="PurchaseLine.position")

class PurchaseLine(Base, IdMixin):
    __tablename__ = "purchase_line"
    purchase_id: Mapped[str] = mapped_column(String(36), ForeignKey("purchase.id"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id"))
    quantity: Mapped[Decimal] = mapped_column(QTY)
    unit_price: Mapped[Decimal | None] = mapped_column(MONEY)  # unit cost
    amount: Mapped[Decimal | None] = mapped_column(MONEY)
    purchase: Mapped[Purchase] = relationship(back_populates="lines")

# ── Ledger ──────────────────────────────────────────────────────────────────
class StockMovement(Base):
    __tablename__ = "stock_movement"
    # integer id doubles as insertion order (tie-breaker for equal dates)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    kind: Mapped[MovementKind] = mapped_column(Enum(MovementKind))
    action: Mapped[MovementAction] = mapped_column(Enum(MovementAction), default=MovementAction.APPLY)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id"))
    quantity: Mapped[Decimal] = mapped_column(QTY)           # always positive
    unit_price: Mapped[Decimal | None] = mapped_column(MONEY)  # unit cost on purchases
    amount: Mapped[Decimal | None] = mapped_column(MONEY)
    currency: Mapped[str] = mapped_column(String(3))
    related_transaction_id: Mapped[str | None] = mapped_column(String(36))
    reverses_movement_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("stock_movement.id"))
    resulting_balance: Mapped[Decimal] = mapped_column(QTY)
    customer_id: Mapped[str | None] = mapped_column(String(36))
    supplier_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (
        Index("ix_stock_movement_product_date", "product_id", "date"),
        Index("ix_stock_movement_related", "related_transaction_id"),
    )

# ── Materialized daily rollups ──────────────────────────────────────────────
# Composite primary keys: a rebuild replaces the row for a key, never adds one.
class DailyProductAggregate(Base):
    __tablename__ = "daily_product_aggregate"
    date_key: Mapped[date] = mapped_column(Date, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), primary_key=True)
    purchased_qty: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"))
    purchased_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    sold_qty: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"))
    sales_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    cogs: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    profit: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))

class DailyCustomerAggregate(Base):
    __tablename__ = "daily_customer_aggregate"
    date_key: Mapped[date] = mapped_column(Date, primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    sold_qty: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"))
    sales_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    cogs: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    profit: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
