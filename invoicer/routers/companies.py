from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit import write_audit
from ..db import get_db
from ..models import Company
from ..schemas import CompanyCreate, CompanyRead
from ..tenancy import require_company

router = APIRouter(tags=["companies"])


@router.post("/companies", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    payload: CompanyCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> CompanyRead:
    """Provision a company. New companies start on the FREE plan."""
    company = Company(name=payload.name)
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="company name already exists",
        )
    db.refresh(company)

    write_audit(
        db,
        actor_type="user",
        actor_id=getattr(request.state, "user_id", "anonymous"),
        tenant_id=company.id,
        action="company.create",
        resource_type="company",
        resource_id=company.id,
        payload={"name": payload.name},
    )
    response.headers["Location"] = f"/companies/{company.id}"
    return CompanyRead.model_validate(company)


@router.get("/companies/me", response_model=CompanyRead)
def read_own_company(company: Company = Depends(require_company)) -> CompanyRead:
    return CompanyRead.model_validate(company)
