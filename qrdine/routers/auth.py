import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from qrdine.schemas.common import LoginIn, Token
from qrdine.util.security import create_token, verify_pw
from qrdine.models.core import StaffUser
from qrdine.db import get_db
from qrdine.errors import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=Token)
def login(body: LoginIn, db: Session = Depends(get_db)):
    user = db.query(StaffUser).filter(StaffUser.username == body.username, StaffUser.active.is_(True)).first()
    if not user or not verify_pw(user.pass_hash, body.password):
        logger.info("failed login for %s", body.username)
        raise AuthenticationError("Invalid credentials")
    return Token(
        access_token=create_token(user.id, user.restaurant_id, user.role.value),
        user={
            "id": user.id,
            "username": user.username,
            "name": user.name,
            "role": user.role.value,
            "restaurant_id": user.restaurant_id,
        },
    )
