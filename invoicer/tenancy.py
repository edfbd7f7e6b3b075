from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from .billing.types import BlockReason
from .db import get_db
from .models import Company


def resolve_tenant(request: Request) -> str:
    """Tenant id attached by the auth middleware. 401 when absent."""
    tenant_id = getattr(request.state, "tenant_id", None)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "code": BlockReason.NOT_AUTHENTICATED.value},
        )
    return tenant_id


def require_company(request: Request, db: Session = Depends(get_db)) -> Company:
    """Resolve the request's company. 403 when the tenant has no company yet."""
    tenant_id = resolve_tenant(request)
    company = db.get(Company, tenant_id)
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "company_not_provisioned", "code": BlockReason.NOT_PROVISIONED.value},
        )
    request.state.company_id = company.id
    return company
