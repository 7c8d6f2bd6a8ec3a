from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from datetime import datetime, date, timezone

from qrdine.db import get_db
from qrdine.deps import Caller, require_admin
from qrdine.services.reporting import daily_sales

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/daily")
def daily(day: date | None = None, db: Session = Depends(get_db), caller: Caller = Depends(require_admin)):
    """Orders, status counts, gross and verified payments for one UTC day (default today)."""
    return daily_sales(db, caller.restaurant_id, day or datetime.now(timezone.utc).date())
