"""Quote and invoice persistence used by the document routers."""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.orm import Session

from .audit import write_audit
from .models import DocumentStatus, Invoice, Quote
from .schemas import InvoiceCreate, InvoiceFromQuote, QuoteCreate

logger = logging.getLogger(__name__)


def _number(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:10].upper()}"


def _items(payload_items) -> list[dict]:
    return [item.model_dump() for item in payload_items]


def create_quote(db: Session, company_id: str, payload: QuoteCreate) -> Quote:
    quote = Quote(
        company_id=company_id,
        number=_number("Q"),
        client_name=payload.client_name,
        title=payload.title,
        items=_items(payload.items),
        total_amount=payload.total_amount,
    )
    db.add(quote)
    db.commit()
    db.refresh(quote)
    return quote


def duplicate_quote(db: Session, source: Quote) -> Quote:
    quote = Quote(
        company_id=source.company_id,
        number=_number("Q"),
        client_name=source.client_name,
        title=f"{source.title} (copy)" if source.title else None,
        items=list(source.items or []),
        total_amount=source.total_amount,
        status=DocumentStatus.DRAFT,
    )
    db.add(quote)
    db.commit()
    db.refresh(quote)
    return quote


def create_invoice(db: Session, company_id: str, payload: InvoiceCreate) -> Invoice:
    invoice = Invoice(
        company_id=company_id,
        quote_id=payload.quote_id,
        number=_number("INV"),
        client_name=payload.client_name,
        title=payload.title,
        items=_items(payload.items),
        total_amount=payload.total_amount,
        due_date=payload.due_date,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def duplicate_invoice(db: Session, source: Invoice) -> Invoice:
    invoice = Invoice(
        company_id=source.company_id,
        quote_id=source.quote_id,
        number=_number("INV"),
        client_name=source.client_name,
        title=f"{source.title} (copy)" if source.title else None,
        items=list(source.items or []),
        total_amount=source.total_amount,
        status=DocumentStatus.DRAFT,
        due_date=source.due_date,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def create_invoice_from_quote(db: Session, quote: Quote, payload: InvoiceFromQuote) -> Invoice:
    """Copy a quote into a new invoice, optionally only the selected line items."""
    source_items = list(quote.items or [])
    if payload.item_indexes is not None:
        items = [source_items[i] for i in payload.item_indexes if 0 <= i < len(source_items)]
        total = sum(float(i.get("quantity", 0)) * float(i.get("unit_price", 0)) for i in items)
    else:
        items = source_items
        total = quote.total_amount
    invoice = Invoice(
        company_id=quote.company_id,
        quote_id=quote.id,
        number=_number("INV"),
        client_name=quote.client_name,
        title=quote.title,
        items=items,
        total_amount=total,
        due_date=payload.due_date,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def discard_document(db: Session, document: Quote | Invoice, actor_id: str) -> None:
    """Compensating delete for a document whose quota charge was refused."""
    kind = "invoice" if isinstance(document, Invoice) else "quote"
    document_id, company_id = document.id, document.company_id
    db.delete(document)
    db.commit()
    write_audit(
        db,
        actor_type="system",
        actor_id=actor_id,
        tenant_id=company_id,
        action=f"{kind}.compensate",
        resource_type=kind,
        resource_id=document_id,
        payload={"reason": "usage_limit_exceeded"},
    )
    logger.info("Discarded %s %s after refused usage charge", kind, document_id)
