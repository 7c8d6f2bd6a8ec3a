from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from qrdine.schemas.orders import OrderLineIn, PaymentModeLiteral

class CreateIntentIn(BaseModel):
    """Either ``items`` (new prepaid order) or ``order_id`` (settle a postpaid bill)."""
    table_token: str
    items: Optional[List[OrderLineIn]] = None
    order_id: Optional[str] = None
    notes: Optional[str] = None
    payment_mode: Optional[PaymentModeLiteral] = None

    @model_validator(mode="after")
    def _one_of(self):
        if not self.order_id and not self.items:
            raise ValueError("Either order_id or items are required")
        return self

class VerifyIn(BaseModel):
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
