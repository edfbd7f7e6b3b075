from __future__ import annotations

import hashlib
import hmac
import json
import os

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import AuditLog

AUDIT_HMAC_SECRET = os.getenv("AUDIT_HMAC_SECRET", "dev_audit_secret")


def hmac_hash(prev_hash: str | None, record: dict) -> str:
    """Compute HMAC hash for audit chain."""
    data = json.dumps(record, sort_keys=True, separators=(",", ":"), default=str)
    if prev_hash:
        data = prev_hash + data
    return hmac.new(
        AUDIT_HMAC_SECRET.encode("utf-8"),
        data.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def _latest_hash(db: Session, tenant_id: str | None) -> str | None:
    if not tenant_id:
        return None
    stmt = (
        select(AuditLog)
        .where(AuditLog.tenant_id == tenant_id)
        .order_by(AuditLog.ts.desc(), AuditLog.id.desc())
        .limit(1)
    )
    prev = db.scalars(stmt).first()
    return prev.hash if prev else None


def write_audit(
    db: Session,
    actor_type: str,
    actor_id: str,
    tenant_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str | None,
    payload: dict | None = None,
) -> AuditLog:
    """Write audit log entry with hash chain and commit it."""
    prev_hash = _latest_hash(db, tenant_id)
    record = {
        "actor_type": actor_type,
        "actor_id": actor_id,
        "tenant_id": tenant_id,
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "payload": payload,
    }
    entry = AuditLog(
        actor_type=actor_type,
        actor_id=actor_id,
        tenant_id=tenant_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        payload=payload,
        prev_hash=prev_hash,
        hash=hmac_hash(prev_hash, record),
    )
    db.add(entry)
    db.commit()
    return entry


def list_audit(db: Session, tenant_id: str, action: str | None = None) -> list[AuditLog]:
    stmt = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    return list(db.scalars(stmt.order_by(AuditLog.ts.asc())).all())
