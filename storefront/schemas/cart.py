from pydantic import BaseModel, Field, field_validator
from typing import Optional


class CartItemCreate(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=1000)


class CartItemUpdate(BaseModel):
    # 0 removes the line; negatives are rejected by the service
    quantity: int


class PromoCodeApply(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper()


class CartMergeRequest(BaseModel):
    guest_session_id: Optional[str] = Field(default=None, max_length=255)

