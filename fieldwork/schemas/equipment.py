import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator


class ItemBase(BaseModel):
    name: str
    kind: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None

    @field_validator("kind", "description", "photo_url", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ItemCreate(ItemBase):
    total_stock: int


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    total_stock: Optional[int] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None


class ItemResponse(ItemBase):
    id: uuid.UUID
    total_stock: int
    available_stock: int
    borrowed: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ItemList(BaseModel):
    data: List[ItemResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class EquipmentReturn(BaseModel):
    photo_url: Optional[str] = None
    quantity: Optional[int] = None
