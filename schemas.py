from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: TransactionType
    description: Optional[str] = Field(default=None, max_length=255)
    parent_id: Optional[int] = None


class TransactionIn(BaseModel):
    category_id: int
    type: TransactionType
    # Sign is checked by the ledger so a non-positive amount surfaces as
    # InvalidAmount rather than a schema error.
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    occurred_at: datetime
    description: Optional[str] = Field(default=None, max_length=255)


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    category_id: Optional[int] = None
