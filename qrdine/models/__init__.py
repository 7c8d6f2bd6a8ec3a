# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    OrderStatus, PaymentMode, PaymentStatus, PaymentPurpose, StaffRole, ActorKind,

    # Restaurant & staff
    Restaurant, StaffUser,

    # Tables & menu
    DiningTable, MenuCategory, MenuItem,

    # Orders / payments
    Order, OrderItem, Payment,

    # Feedback & audit
    Feedback, AuditLog,
)

__all__ = [
    "OrderStatus", "PaymentMode", "PaymentStatus", "PaymentPurpose", "StaffRole", "ActorKind",
    "Restaurant", "StaffUser",
    "DiningTable", "MenuCategory", "MenuItem",
    "Order", "OrderItem", "Payment",
    "Feedback", "AuditLog",
]
