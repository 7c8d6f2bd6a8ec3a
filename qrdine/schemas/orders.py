from pydantic import BaseModel, Field
from typing import Optional, Literal, List

PaymentModeLiteral = Literal["PREPAID", "POSTPAID"]

class OrderLineIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(default=1, gt=0)
    notes: Optional[str] = None
    # accepted for client compatibility, never used for pricing
    price: Optional[float] = None

class OrderIn(BaseModel):
    table_token: str
    items: List[OrderLineIn] = Field(min_length=1)
    payment_mode: PaymentModeLiteral = "POSTPAID"
    notes: Optional[str] = None

class AddItemsIn(BaseModel):
    table_token: str
    items: List[OrderLineIn] = Field(min_length=1)

class StatusIn(BaseModel):
    # plain str so unknown values reach the engine and fail as validation errors
    internal_status: str
    expected_status: Optional[str] = None

class OrderOut(BaseModel):
    order_id: str
    public_status: str
    total_amount: float
    payment_mode: PaymentModeLiteral
