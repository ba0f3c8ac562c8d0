"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, status


def get_tenant_id(
    x_organization_id: str | None = Header(default=None, alias="X-Organization-Id"),
) -> str:
    """
    Resolve the calling tenant from the organization header.
    """

    tenant_id = (x_organization_id or "").strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header is required.",
        )
    return tenant_id
