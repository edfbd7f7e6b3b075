from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import DocumentStatus, Plan


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1)


class CompanyRead(BaseModel):
    id: str
    name: str
    plan: Plan
    subscription_status: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LineItem(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: float = Field(1, ge=0)
    unit_price: float = Field(0, ge=0)


class DocumentBase(BaseModel):
    client_name: str = Field(..., min_length=1)
    title: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    total_amount: float = Field(0, ge=0)


class QuoteCreate(DocumentBase):
    pass


class QuoteRead(DocumentBase):
    id: str
    number: str
    status: DocumentStatus
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceCreate(DocumentBase):
    quote_id: Optional[str] = None
    due_date: Optional[datetime] = None


class InvoiceFromQuote(BaseModel):
    item_indexes: Optional[List[int]] = None
    due_date: Optional[datetime] = None


class InvoiceRead(DocumentBase):
    id: str
    number: str
    quote_id: Optional[str] = None
    status: DocumentStatus
    due_date: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


QuoteList = List[QuoteRead]
InvoiceList = List[InvoiceRead]
