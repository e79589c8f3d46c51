"""
Request context resolution.

Every duplicate endpoint is tenant-scoped. The tenant and acting user are
taken from the X-Tenant-Id / X-User-Id headers set by the upstream auth
gateway and passed explicitly to the engine.
"""

import logging
import uuid

from fastapi import Header, HTTPException

from crm.deduplication import RequestContext

logger = logging.getLogger(__name__)


def _parse_header(value: str | None, header: str) -> uuid.UUID:
    if not value:
        raise HTTPException(status_code=401, detail=f"Missing {header} header")
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        logger.warning(f"Rejected request with malformed {header}: {value!r}")
        raise HTTPException(status_code=401, detail=f"Invalid {header} header") from None


def get_request_context(
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-Id"),
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> RequestContext:
    """FastAPI dependency: tenant and user for the current request."""
    return RequestContext(
        tenant_id=_parse_header(x_tenant_id, "X-Tenant-Id"),
        user_id=_parse_header(x_user_id, "X-User-Id"),
    )
