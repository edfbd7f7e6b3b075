from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import documents
from ..audit import write_audit
from ..billing.guard import consume_for_created, usage_headers
from ..billing.types import Metric
from ..db import get_db
from ..models import Company, Invoice, Quote
from ..schemas import InvoiceCreate, InvoiceFromQuote, InvoiceList, InvoiceRead
from ..tenancy import require_company

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _get_invoice(db: Session, company: Company, invoice_id: str) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if invoice is None or invoice.company_id != company.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="invoice not found")
    return invoice


def _get_quote(db: Session, company: Company, quote_id: str | None) -> Quote:
    quote = db.get(Quote, quote_id) if quote_id else None
    if quote is None or quote.company_id != company.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="quote not found")
    return quote


def _charged_create(
    db: Session,
    request: Request,
    response: Response,
    company: Company,
    create,
    action: str = "invoice.create",
) -> InvoiceRead:
    actor_id = getattr(request.state, "user_id", "anonymous")
    invoice, result = consume_for_created(
        db,
        company.id,
        Metric.DOCUMENT_CREATE,
        create=create,
        compensate=lambda inv: documents.discard_document(db, inv, actor_id),
    )
    write_audit(
        db,
        actor_type="user",
        actor_id=actor_id,
        tenant_id=company.id,
        action=action,
        resource_type="invoice",
        resource_id=invoice.id,
        payload={"number": invoice.number, "quote_id": invoice.quote_id},
    )
    for name, value in usage_headers(result).items():
        response.headers[name] = value
    response.headers["Location"] = f"/invoices/{invoice.id}"
    return InvoiceRead.model_validate(invoice)


@router.post("", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    request: Request,
    response: Response,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> InvoiceRead:
    if payload.quote_id:
        _get_quote(db, company, payload.quote_id)
    return _charged_create(
        db, request, response, company, lambda: documents.create_invoice(db, company.id, payload)
    )


@router.post("/from-quote/{quote_id}", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice_from_quote(
    quote_id: str,
    request: Request,
    response: Response,
    payload: InvoiceFromQuote | None = None,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> InvoiceRead:
    """Turn a quote into an invoice. Charged as one document like any other creation."""
    quote = _get_quote(db, company, quote_id)
    payload = payload or InvoiceFromQuote()
    return _charged_create(
        db,
        request,
        response,
        company,
        lambda: documents.create_invoice_from_quote(db, quote, payload),
        action="invoice.from_quote",
    )


@router.post("/{invoice_id}/duplicate", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def duplicate_invoice(
    invoice_id: str,
    request: Request,
    response: Response,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> InvoiceRead:
    source = _get_invoice(db, company, invoice_id)
    return _charged_create(db, request, response, company, lambda: documents.duplicate_invoice(db, source))


@router.get("", response_model=InvoiceList)
def list_invoices(
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> InvoiceList:
    stmt = select(Invoice).where(Invoice.company_id == company.id).order_by(Invoice.created_at.desc())
    return [InvoiceRead.model_validate(inv) for inv in db.scalars(stmt).all()]


@router.get("/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: str,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> InvoiceRead:
    return InvoiceRead.model_validate(_get_invoice(db, company, invoice_id))


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: str,
    request: Request,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> Response:
    invoice = _get_invoice(db, company, invoice_id)
    db.delete(invoice)
    db.commit()
    write_audit(
        db,
        actor_type="user",
        actor_id=getattr(request.state, "user_id", "anonymous"),
        tenant_id=company.id,
        action="invoice.delete",
        resource_type="invoice",
        resource_id=invoice_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
