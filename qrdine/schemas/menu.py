from pydantic import BaseModel, Field
from typing import Optional

class MenuCategoryIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    sort_order: int = 0

class MenuCategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None
    active: Optional[bool] = None

class MenuItemIn(BaseModel):
    category_id: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: float = Field(ge=0)
    image_url: Optional[str] = None
    is_veg: bool = True
    sort_order: int = 0

class MenuItemUpdate(BaseModel):
    category_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    is_veg: Optional[bool] = None
    active: Optional[bool] = None
    sort_order: Optional[int] = None
