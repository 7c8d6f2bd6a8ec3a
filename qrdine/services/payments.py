"""Payment intents and their completion.

A payment row is the persisted pending intent. For a prepaid cart it stores
the priced lines (``purpose=ORDER``); for a postpaid bill it stores the order
to settle (``purpose=BILL``). Completion needs only the gateway ref and the
client's proof:

    created --verify ok--> paid    (ORDER: order + lines created, payment linked)
    created --verify bad-> failed  (no order is ever created)

A prepaid order therefore never exists, and never reaches the kitchen, before
its payment has been verified.

Completion claims the row with a conditional update, so of two concurrent
verifies for one intent only the first creates an order; the other returns
what the first linked. A bill is closed by at most one payment.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import exists, update
from sqlalchemy.orm import Session, aliased

from qrdine.config import settings
from qrdine.errors import ConflictError, NotFoundError, ValidationError, VerificationFailed
from qrdine.events.bus import EventBus
from qrdine.models.core import (
    ActorKind, DiningTable, Order, Payment, PaymentMode, PaymentPurpose, PaymentStatus,
)
from qrdine.services.billing import _dec, _money, price_lines
from qrdine.services.ordering import require_mode, announce_new_order, insert_order, resolve_table
from qrdine.services.payment_gateway import PaymentGateway, to_minor_units
from qrdine.util.audit import audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentProof:
    gateway_payment_id: str | None = None
    signature: str | None = None


def _intent_response(gateway: PaymentGateway, p: Payment) -> dict:
    out = {
        "razorpay_order_id": p.gateway_order_id,
        "payment_id": p.id,
        "amount": to_minor_units(p.amount),
        "total_amount": _money(p.amount),
        "currency": p.currency,
        "key_id": gateway.key_id,
    }
    if gateway.mock:
        out["mock_mode"] = True
    return out


def _open_intent(db: Session, gateway: PaymentGateway, table: DiningTable, amount: Decimal,
                 mode: PaymentMode, purpose: PaymentPurpose, intent: dict,
                 order_id: str | None = None) -> Payment:
    ref = gateway.create_intent(amount, settings.PAYMENT_CURRENCY, {
        "table_id": table.id, "restaurant_id": table.restaurant_id,
    })
    p = Payment(
        restaurant_id=table.restaurant_id,
        table_id=table.id,
        order_id=order_id,
        gateway_order_id=ref,
        amount=amount,
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.CREATED,
        verified=False,
        payment_mode=mode,
        purpose=purpose,
        intent=json.dumps(intent),
    )
    db.add(p)
    db.commit()
    return p


def begin_prepaid_order(db: Session, gateway: PaymentGateway, table_token: str, lines,
                        notes: str | None = None) -> dict:
    table = resolve_table(db, table_token)
    require_mode(db, table, PaymentMode.PREPAID)
    total, priced = price_lines(db, table.restaurant_id, lines)
    p = _open_intent(db, gateway, table, total, PaymentMode.PREPAID, PaymentPurpose.ORDER,
                     {"lines": priced, "notes": notes or ""})
    logger.info("prepaid intent %s opened for table %s, amount %s", p.gateway_order_id, table.table_number, total)
    return _intent_response(gateway, p)


def settle_bill(db: Session, gateway: PaymentGateway, table_token: str, order_id: str) -> dict:
    table = resolve_table(db, table_token)
    order = (
        db.query(Order)
        .filter(Order.id == order_id, Order.table_id == table.id, Order.payment_mode == PaymentMode.POSTPAID)
        .with_for_update()
        .first()
    )
    if not order:
        raise NotFoundError("Order not found for this table")
    if bill_payments(db, order.id, PaymentStatus.PAID).first():
        raise ConflictError("Bill already settled")
    # one open bill intent per order; a retry gets the same one back
    pending = bill_payments(db, order.id, PaymentStatus.CREATED).first()
    if pending:
        db.rollback()
        return _intent_response(gateway, pending)
    # billed at the persisted total, not re-priced
    p = _open_intent(db, gateway, table, _dec(order.total_amount), PaymentMode.POSTPAID,
                     PaymentPurpose.BILL, {"order_id": order.id}, order_id=order.id)
    return _intent_response(gateway, p)


def _load_intent(db: Session, ref: str, purpose: PaymentPurpose) -> Payment:
    p = db.query(Payment).filter(Payment.gateway_order_id == ref).first()
    if not p:
        raise NotFoundError("Payment record not found")
    if p.purpose != purpose:
        raise ValidationError("Payment intent is not for this operation")
    return p


def _verify(db: Session, gateway: PaymentGateway, p: Payment, proof: PaymentProof) -> None:
    """Check the proof; a failure is recorded on the row before raising.

    Only a still-``created`` row is marked failed, so a bad retry cannot undo
    a completion that won in the meantime.
    """
    if gateway.verify(p.gateway_order_id, proof.gateway_payment_id, proof.signature):
        return
    db.execute(
        update(Payment)
        .where(Payment.id == p.id, Payment.status == PaymentStatus.CREATED)
        .values(status=PaymentStatus.FAILED, verified=False,
                gateway_payment_id=proof.gateway_payment_id or "", signature=proof.signature or "")
    )
    audit(db, None, "Payment", p.id, "VERIFY_FAILED", actor_kind=ActorKind.CUSTOMER,
          after={"gateway_order_id": p.gateway_order_id})
    db.commit()
    logger.warning("payment verification failed for %s", p.gateway_order_id)
    raise VerificationFailed()


def _claim(db: Session, p: Payment, proof: PaymentProof, *extra) -> bool:
    """Move ``p`` from created to paid. False when another completion got there first.

    The row stays locked until the caller commits or rolls back.
    """
    res = db.execute(
        update(Payment)
        .where(Payment.id == p.id, Payment.status == PaymentStatus.CREATED, *extra)
        .values(status=PaymentStatus.PAID, verified=True,
                gateway_payment_id=proof.gateway_payment_id or f"mock_pay_{p.id[:8]}",
                signature=proof.signature or "")
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    db.refresh(p)
    return True


def _reload(db: Session, p: Payment) -> Payment:
    db.rollback()
    db.refresh(p)
    return p


def _prepaid_result(db: Session, p: Payment) -> dict:
    if p.status == PaymentStatus.FAILED or not p.order_id:
        raise VerificationFailed()
    order = db.get(Order, p.order_id)
    return {"verified": True, "order_id": order.id, "public_status": order.public_status,
            "total_amount": _money(order.total_amount)}


def complete_prepaid_order(db: Session, bus: EventBus, gateway: PaymentGateway, ref: str,
                           proof: PaymentProof) -> dict:
    p = _load_intent(db, ref, PaymentPurpose.ORDER)
    if p.status != PaymentStatus.CREATED:
        return _prepaid_result(db, p)

    _verify(db, gateway, p, proof)

    table = db.get(DiningTable, p.table_id)
    intent = json.loads(p.intent or "{}")
    priced = intent.get("lines") or []
    if not priced:
        raise ValidationError("Payment intent has no items")
    total = _dec(sum((_dec(l["price_at_order"]) * l["quantity"] for l in priced), Decimal("0")))
    try:
        if not _claim(db, p, proof):
            logger.info("payment %s already completed elsewhere", p.gateway_order_id)
            return _prepaid_result(db, _reload(db, p))
        order = insert_order(db, table, PaymentMode.PREPAID, total, priced, intent.get("notes"))
        p.order_id = order.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    announce_new_order(db, bus, order, table)
    logger.info("prepaid order %s created after payment %s", order.id, p.gateway_order_id)
    return {
        "verified": True,
        "order_id": order.id,
        "public_status": order.public_status,
        "total_amount": _money(total),
        "message": "Payment verified. Your order has been placed!",
    }


def _bill_result(p: Payment) -> dict:
    if p.status == PaymentStatus.FAILED:
        raise VerificationFailed()
    if p.status != PaymentStatus.PAID:
        # verified by the gateway, but another payment closed the bill first
        logger.warning("duplicate bill payment %s for order %s", p.gateway_order_id, p.order_id)
        raise ConflictError("Bill already settled")
    return {"verified": True, "order_id": p.order_id}


def complete_bill_settlement(db: Session, gateway: PaymentGateway, ref: str, proof: PaymentProof) -> dict:
    p = _load_intent(db, ref, PaymentPurpose.BILL)
    order_id = p.order_id or json.loads(p.intent or "{}").get("order_id")
    if p.status != PaymentStatus.CREATED:
        return _bill_result(p)

    _verify(db, gateway, p, proof)
    if not db.query(Order).filter(Order.id == order_id).with_for_update().first():
        db.rollback()
        raise NotFoundError("Order not found")
    other = aliased(Payment)
    settled = exists().where(other.order_id == order_id, other.verified.is_(True), other.id != p.id)
    try:
        if not _claim(db, p, proof, ~settled):
            return _bill_result(_reload(db, p))
        p.order_id = order_id
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("bill for order %s settled by payment %s", order_id, p.gateway_order_id)
    return {"verified": True, "order_id": order_id, "message": "Payment verified. Bill is closed."}


def bill_payments(db: Session, order_id: str, status: PaymentStatus):
    """Query of the BILL payments for ``order_id`` in ``status``."""
    return (
        db.query(Payment)
        .filter(Payment.order_id == order_id,
                Payment.purpose == PaymentPurpose.BILL,
                Payment.status == status)
        .order_by(Payment.created_at.desc())
    )


def complete_intent(db: Session, bus: EventBus, gateway: PaymentGateway, ref: str, proof: PaymentProof) -> dict:
    """Complete whichever kind of intent ``ref`` names."""
    p = db.query(Payment).filter(Payment.gateway_order_id == ref).first()
    if not p:
        raise NotFoundError("Payment record not found")
    if p.purpose == PaymentPurpose.BILL:
        return complete_bill_settlement(db, gateway, ref, proof)
    return complete_prepaid_order(db, bus, gateway, ref, proof)
