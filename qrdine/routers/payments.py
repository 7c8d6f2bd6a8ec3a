from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from qrdine.db import get_db
from qrdine.deps import Caller, get_bus, get_gateway, require_admin
from qrdine.events.bus import EventBus
from qrdine.models.core import DiningTable, Payment
from qrdine.schemas.payments import CreateIntentIn, VerifyIn
from qrdine.services import payments
from qrdine.services.billing import _money
from qrdine.services.payment_gateway import PaymentGateway
from qrdine.services.reporting import day_bounds, payment_summary

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/create-order")
def create_intent(body: CreateIntentIn, db: Session = Depends(get_db),
                  gateway: PaymentGateway = Depends(get_gateway)):
    """
    Open a gateway intent.
      - order_id given: settle that POSTPAID bill at its stored total
      - items given:    new PREPAID cart; the order only exists after /verify
    """
    if body.order_id:
        return payments.settle_bill(db, gateway, body.table_token, body.order_id)
    return payments.begin_prepaid_order(db, gateway, body.table_token, body.items, body.notes)


@router.post("/verify")
def verify(body: VerifyIn, db: Session = Depends(get_db), bus: EventBus = Depends(get_bus),
           gateway: PaymentGateway = Depends(get_gateway)):
    proof = payments.PaymentProof(gateway_payment_id=body.razorpay_payment_id, signature=body.razorpay_signature)
    return payments.complete_intent(db, bus, gateway, body.razorpay_order_id, proof)


@router.get("/report")
def report(day: date | None = None, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    q = db.query(Payment).filter(Payment.restaurant_id == caller.restaurant_id)
    if day:
        start, end = day_bounds(day)
        q = q.filter(Payment.created_at >= start, Payment.created_at < end)
    rows = q.order_by(Payment.created_at.desc()).limit(100).all()

    numbers = {t.id: t.table_number for t in
               db.query(DiningTable).filter(DiningTable.restaurant_id == caller.restaurant_id)}
    out = [{
        "id": p.id,
        "order_id": p.order_id,
        "table_number": numbers.get(p.table_id),
        "razorpay_order_id": p.gateway_order_id,
        "razorpay_payment_id": p.gateway_payment_id,
        "amount": _money(p.amount),
        "currency": p.currency,
        "status": p.status.value,
        "verified": bool(p.verified),
        "payment_mode": p.payment_mode.value,
        "purpose": p.purpose.value,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    } for p in rows]

    today = payment_summary(db, caller.restaurant_id, datetime.now(timezone.utc).date())
    return {
        "payments": out,
        "today_summary": {"count": today["verified_count"], "total": today["verified_amount"]},
    }
