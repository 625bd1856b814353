# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from accountlink.linking.flow import AccountLinkingFlow, get_account_linking_flow

TENANT_HEADER = "X-Tenant-Id"
USER_HEADER = "X-User-Id"


@dataclass(frozen=True)
class Identity:
    """Platform identity of the caller."""

    tenant_id: str
    user_id: str


async def get_current_identity(request: Request) -> Identity:
    """FastAPI dependency resolving the caller's platform identity.

    Platform authentication happens upstream (gateway or identity platform),
    which forwards the verified tenant and user ids as headers. Deployments
    with in-process token validation override this dependency::

        app.dependency_overrides[get_current_identity] = my_validator
    """
    tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not tenant_id or not user_id:
        raise HTTPException(status_code=401, detail="Caller identity missing")
    return Identity(tenant_id=tenant_id, user_id=user_id)


def get_flow() -> AccountLinkingFlow:
    return get_account_linking_flow()
