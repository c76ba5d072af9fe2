from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from horizons.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
MONEY = Numeric(12, 2)

BAG_STATUSES = (
    "in_inventory",
    "reserved",
    "verified",
    "out_for_delivery",
    "sold",
    "returned",
    "returning",
    "missing",
)
SALE_STATUSES = ("pending", "completed", "cancelled")
TRANSACTION_TYPES = ("sale", "withdrawal", "deposit", "refund", "pending")
ROLE_REQUEST_STATUSES = ("pending", "approved", "denied")
RESERVE_REQUEST_STATUSES = ("pending", "accepted", "rejected")
DEAL_STATUSES = ("pending", "finalized", "failed")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_email: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Profile(Base):
    __tablename__ = "profile"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(Text, unique=True)
    first_name: Mapped[str | None] = mapped_column(Text)
    last_name: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Role(Base):
    __tablename__ = "role"
    __table_args__ = (Index("ix_role_tenant_name", "tenant_id", "name", unique=True),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class Employee(Base):
    __tablename__ = "employee"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    profile_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("profile.id"), nullable=False, unique=True
    )
    role_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("role.id"))
    phone: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))

    profile: Mapped[Profile] = relationship()
    role: Mapped[Role | None] = relationship()


class RoleRequest(Base):
    __tablename__ = "role_request"
    __table_args__ = (
        CheckConstraint(_in("status", ROLE_REQUEST_STATUSES), name="role_request_status"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("profile.id"), nullable=False
    )
    desired_role_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("role.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    decided_by_employee_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))


strain_harvest_room = Table(
    "strain_harvest_room",
    Base.metadata,
    Column("strain_id", BigInteger, ForeignKey("strain.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "harvest_room_id",
        BigInteger,
        ForeignKey("harvest_room.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class HarvestRoom(Base):
    __tablename__ = "harvest_room"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    location: Mapped[str | None] = mapped_column(Text)
    capacity: Mapped[int | None] = mapped_column()
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Strain(Base):
    __tablename__ = "strain"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    colors: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    harvest_rooms: Mapped[list[HarvestRoom]] = relationship(secondary=strain_harvest_room)


class BagSizeCategory(Base):
    __tablename__ = "bag_size_category"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    price: Mapped[Numeric | None] = mapped_column(MONEY)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Bag(Base):
    __tablename__ = "bag"
    __table_args__ = (
        CheckConstraint(_in("current_status", BAG_STATUSES), name="bag_status"),
        CheckConstraint("weight >= 0", name="bag_weight_non_negative"),
        Index("ix_bag_tenant_status", "tenant_id", "current_status"),
        Index("ix_bag_group", "group_id"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    qr_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    group_id: Mapped[str | None] = mapped_column(Text)
    harvest_room_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("harvest_room.id")
    )
    strain_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("strain.id"))
    size_category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("bag_size_category.id")
    )
    employee_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    current_status: Mapped[str] = mapped_column(Text, nullable=False, default="in_inventory")
    reserved_for: Mapped[str | None] = mapped_column(Text)
    delivery_person: Mapped[str | None] = mapped_column(Text)
    delivery_recipient: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))


class BagStatusLog(Base):
    __tablename__ = "bag_status_log"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    bag_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("bag.id", ondelete="CASCADE"), nullable=False
    )
    old_status: Mapped[str | None] = mapped_column(Text)
    new_status: Mapped[str] = mapped_column(Text, nullable=False)
    changed_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    changed_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class Customer(Base):
    __tablename__ = "customer"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    business_name: Mapped[str | None] = mapped_column(Text)
    license_number: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    drivers_license_url: Mapped[str | None] = mapped_column(Text)
    zoho_customer_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class CashTransaction(Base):
    __tablename__ = "cash_transaction"
    __table_args__ = (
        CheckConstraint(_in("transaction_type", TRANSACTION_TYPES), name="transaction_type"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    transaction_date: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    updated_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))


class Safe(Base):
    __tablename__ = "safe"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False, unique=True
    )
    current_balance: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    last_updated: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))


class Sale(Base):
    __tablename__ = "sale"
    __table_args__ = (CheckConstraint(_in("status", SALE_STATUSES), name="sale_status"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("customer.id"))
    employee_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    cash_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("cash_transaction.id")
    )
    sale_date: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    total_amount: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    signature_url: Mapped[str] = mapped_column(Text, nullable=False)
    zoho_salesorder_id: Mapped[str | None] = mapped_column(Text)

    customer: Mapped[Customer | None] = relationship()


class SaleItem(Base):
    __tablename__ = "sale_item"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    sale_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale.id", ondelete="CASCADE"), nullable=False
    )
    bag_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("bag.id", ondelete="SET NULL")
    )
    price: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    bag: Mapped[Bag | None] = relationship()


class SaleNotification(Base):
    __tablename__ = "sale_notification"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    sale_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notified_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class SaleReturn(Base):
    __tablename__ = "sale_return"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    sale_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale_item.id"), nullable=False, unique=True
    )
    cash_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("cash_transaction.id")
    )
    reason: Mapped[str | None] = mapped_column(Text)
    return_date: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReserveRequest(Base):
    __tablename__ = "reserve_request"
    __table_args__ = (
        CheckConstraint(_in("status", RESERVE_REQUEST_STATUSES), name="reserve_request_status"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list["ReserveRequestItem"]] = relationship(
        back_populates="request", cascade="all, delete-orphan"
    )


class ReserveRequestItem(Base):
    __tablename__ = "reserve_request_item"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    reserve_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("reserve_request.id", ondelete="CASCADE"), nullable=False
    )
    bag_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("bag.id", ondelete="CASCADE"), nullable=False
    )

    request: Mapped[ReserveRequest] = relationship(back_populates="items")
    bag: Mapped[Bag] = relationship()


class Deal(Base):
    __tablename__ = "deal"
    __table_args__ = (CheckConstraint(_in("status", DEAL_STATUSES), name="deal_status"),)

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    employee_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    customer_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("customer.id"), nullable=False
    )
    bag_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("bag.id", ondelete="SET NULL")
    )
    agreed_price: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    payment_due_date: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True))

    employee: Mapped[Employee | None] = relationship()
    customer: Mapped[Customer] = relationship()
    bag: Mapped[Bag | None] = relationship()


class DealNotification(Base):
    __tablename__ = "deal_notification"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("deal.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notified_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("tenant.id"))
    employee_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("employee.id"))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON_TYPE)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
