from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, Integer, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from decimal import Decimal
from qrdine.db import Base
from qrdine.models.common import IdMixin, TSMMixin

# ── Enums ───────────────────────────────────────────────────────────────────
class OrderStatus(PyEnum):
    PLACED = "PLACED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"

class PaymentMode(PyEnum):
    PREPAID = "PREPAID"
    POSTPAID = "POSTPAID"

class PaymentStatus(PyEnum):
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"  # reserved, nothing issues refunds yet

class PaymentPurpose(PyEnum):
    ORDER = "ORDER"  # prepaid cart, order is created on verification
    BILL = "BILL"    # settlement of an existing postpaid order

class StaffRole(PyEnum):
    ADMIN = "admin"
    KITCHEN = "kitchen"
    WAITER = "waiter"

class ActorKind(PyEnum):
    STAFF = "staff"        # logged-in user, actor_user_id set
    CUSTOMER = "customer"  # table-token caller, no user id

# ── Restaurant & staff ──────────────────────────────────────────────────────
class Restaurant(Base, IdMixin, TSMMixin):
    __tablename__ = "restaurant"
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    prepaid_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    postpaid_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

class StaffUser(Base, IdMixin, TSMMixin):
    __tablename__ = "staff_user"
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    username: Mapped[str] = mapped_column(String(80), unique=True)
    name: Mapped[str | None] = mapped_column(String(160))
    pass_hash: Mapped[str] = mapped_column(String(200))
    role: Mapped[StaffRole] = mapped_column(Enum(StaffRole))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Dining tables ───────────────────────────────────────────────────────────
class DiningTable(Base, IdMixin, TSMMixin):
    __tablename__ = "dining_table"
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    table_number: Mapped[int] = mapped_column(Integer)
    qr_token: Mapped[str] = mapped_column(String(64), unique=True)  # rotated, never reused
    seats: Mapped[int] = mapped_column(Integer, default=4)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    __table_args__ = (
        UniqueConstraint("restaurant_id", "table_number", name="uq_dining_table_number"),
    )

# ── Menu ────────────────────────────────────────────────────────────────────
class MenuCategory(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_category"
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class MenuItem(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_item"
    category_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_category.id"))
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    image_url: Mapped[str | None] = mapped_column(String(400))
    is_veg: Mapped[bool] = mapped_column(Boolean, default=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_menu_item_price"),
    )

# ── Orders / payments ───────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"))
    internal_status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.PLACED)
    public_status: Mapped[str] = mapped_column(String(40))
    payment_mode: Mapped[PaymentMode] = mapped_column(Enum(PaymentMode))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text)

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    menu_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    # snapshot at order time; never updated afterwards
    item_name: Mapped[str] = mapped_column(String(160))
    price_at_order: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    quantity: Mapped[int] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity"),
    )

class Payment(Base, IdMixin, TSMMixin):
    __tablename__ = "payment"
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("order.id"))
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"))
    gateway_order_id: Mapped[str] = mapped_column(String(120), unique=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(120))
    signature: Mapped[str | None] = mapped_column(String(200))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(String(8), default="INR")
    status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.CREATED)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_mode: Mapped[PaymentMode] = mapped_column(Enum(PaymentMode))
    purpose: Mapped[PaymentPurpose] = mapped_column(Enum(PaymentPurpose))
    intent: Mapped[str | None] = mapped_column(Text)  # JSON: pending cart for ORDER intents

# ── Feedback & audit ────────────────────────────────────────────────────────
class Feedback(Base, IdMixin, TSMMixin):
    __tablename__ = "feedback"
    restaurant_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant.id"))
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"))
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("order.id"))
    rating: Mapped[int] = mapped_column(Integer)
    comment: Mapped[str | None] = mapped_column(Text)
    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating"),
    )

class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_kind: Mapped[ActorKind] = mapped_column(Enum(ActorKind), default=ActorKind.STAFF)
    actor_user_id: Mapped[str | None] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
