from pydantic import BaseModel, Field
from typing import Optional

class LoginIn(BaseModel):
    username: str
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict

class TableIn(BaseModel):
    table_number: int = Field(gt=0)
    seats: int = Field(default=4, gt=0)

class TableUpdate(BaseModel):
    table_number: Optional[int] = Field(default=None, gt=0)
    seats: Optional[int] = Field(default=None, gt=0)
    active: Optional[bool] = None

class CallWaiterIn(BaseModel):
    table_token: str

class FeedbackIn(BaseModel):
    table_token: str
    rating: int = Field(ge=1, le=5)
    order_id: Optional[str] = None
    comment: Optional[str] = None
