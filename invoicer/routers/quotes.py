from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import documents
from ..audit import write_audit
from ..billing.guard import consume_for_created, usage_headers
from ..billing.types import Metric
from ..db import get_db
from ..models import Company, Quote
from ..schemas import QuoteCreate, QuoteList, QuoteRead
from ..tenancy import require_company

router = APIRouter(prefix="/quotes", tags=["quotes"])


def _get_quote(db: Session, company: Company, quote_id: str) -> Quote:
    quote = db.get(Quote, quote_id)
    if quote is None or quote.company_id != company.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="quote not found")
    return quote


def _charged_create(db: Session, request: Request, response: Response, company: Company, create) -> QuoteRead:
    """Create a quote through the usage guard and shape the 201 response."""
    actor_id = getattr(request.state, "user_id", "anonymous")
    quote, result = consume_for_created(
        db,
        company.id,
        Metric.DOCUMENT_CREATE,
        create=create,
        compensate=lambda q: documents.discard_document(db, q, actor_id),
    )
    write_audit(
        db,
        actor_type="user",
        actor_id=actor_id,
        tenant_id=company.id,
        action="quote.create",
        resource_type="quote",
        resource_id=quote.id,
        payload={"number": quote.number},
    )
    for name, value in usage_headers(result).items():
        response.headers[name] = value
    response.headers["Location"] = f"/quotes/{quote.id}"
    return QuoteRead.model_validate(quote)


@router.post("", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def create_quote(
    payload: QuoteCreate,
    request: Request,
    response: Response,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> QuoteRead:
    return _charged_create(
        db, request, response, company, lambda: documents.create_quote(db, company.id, payload)
    )


@router.post("/{quote_id}/duplicate", response_model=QuoteRead, status_code=status.HTTP_201_CREATED)
def duplicate_quote(
    quote_id: str,
    request: Request,
    response: Response,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> QuoteRead:
    source = _get_quote(db, company, quote_id)
    return _charged_create(db, request, response, company, lambda: documents.duplicate_quote(db, source))


@router.get("", response_model=QuoteList)
def list_quotes(
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> QuoteList:
    stmt = select(Quote).where(Quote.company_id == company.id).order_by(Quote.created_at.desc())
    return [QuoteRead.model_validate(q) for q in db.scalars(stmt).all()]


@router.get("/{quote_id}", response_model=QuoteRead)
def get_quote(
    quote_id: str,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> QuoteRead:
    return QuoteRead.model_validate(_get_quote(db, company, quote_id))


@router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quote(
    quote_id: str,
    request: Request,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
) -> Response:
    # Deleting never refunds quota; the counter only grows within a period.
    quote = _get_quote(db, company, quote_id)
    db.delete(quote)
    db.commit()
    write_audit(
        db,
        actor_type="user",
        actor_id=getattr(request.state, "user_id", "anonymous"),
        tenant_id=company.id,
        action="quote.delete",
        resource_type="quote",
        resource_id=quote_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
