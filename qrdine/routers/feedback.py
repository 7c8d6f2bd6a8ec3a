from fastapi import APIRouter, Depends
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from qrdine.db import get_db
from qrdine.deps import Caller, require_admin
from qrdine.errors import NotFoundError
from qrdine.models.core import DiningTable, Feedback, Order
from qrdine.schemas.common import FeedbackIn
from qrdine.services.ordering import resolve_table

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("/", status_code=201)
def submit(body: FeedbackIn, db: Session = Depends(get_db)):
    t = resolve_table(db, body.table_token)
    if body.order_id:
        o = db.get(Order, body.order_id)
        if not o or o.table_id != t.id:
            raise NotFoundError("Order not found for this table")
    f = Feedback(
        restaurant_id=t.restaurant_id,
        table_id=t.id,
        order_id=body.order_id,
        rating=body.rating,
        comment=body.comment or "",
    )
    db.add(f)
    db.commit()
    return {"success": True, "feedback_id": f.id}


@router.get("/")
def list_feedback(db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    rows = (
        db.query(Feedback, DiningTable.table_number)
        .outerjoin(DiningTable, Feedback.table_id == DiningTable.id)
        .filter(Feedback.restaurant_id == caller.restaurant_id)
        .order_by(Feedback.created_at.desc())
        .limit(100)
        .all()
    )
    total, avg, positive, negative = (
        db.query(
            func.count(Feedback.id),
            func.avg(Feedback.rating),
            func.coalesce(func.sum(case((Feedback.rating >= 4, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Feedback.rating <= 2, 1), else_=0)), 0),
        )
        .filter(Feedback.restaurant_id == caller.restaurant_id)
        .one()
    )
    return {
        "feedbacks": [{
            "id": f.id,
            "order_id": f.order_id,
            "table_number": number,
            "rating": f.rating,
            "comment": f.comment,
            "created_at": f.created_at.isoformat() if f.created_at else None,
        } for f, number in rows],
        "stats": {
            "total": int(total or 0),
            "avg_rating": round(float(avg), 1) if avg is not None else None,
            "positive": int(positive or 0),
            "negative": int(negative or 0),
        },
    }
