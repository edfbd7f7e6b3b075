from __future__ import annotations

from typing import Callable

from fastapi import Request, Response

TENANT_HEADER = "X-Company-Id"
USER_HEADER = "X-User-Id"
EMAIL_HEADER = "X-User-Email"


async def auth_middleware(request: Request, call_next: Callable) -> Response:
    """Attach identity asserted by the upstream auth proxy to request.state.

    Authentication itself happens in front of this service; requests without
    a tenant header continue anonymously and fail in tenant-scoped routes.
    """
    tenant_id = request.headers.get(TENANT_HEADER)
    user_id = request.headers.get(USER_HEADER)

    request.state.tenant_id = tenant_id or None
    request.state.user_id = user_id or "anonymous"
    request.state.user_email = request.headers.get(EMAIL_HEADER)
    request.state.authn = "proxy" if tenant_id else "anonymous"

    return await call_next(request)
