"""
Request-scoped dependencies: company context, database session, service.

The company context is an explicit per-request value taken from the
``X-Company-Id`` header; it is never stored globally.
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from treasury_kernel.logging_config import LogContext
from treasury_modules.smart_payment.service import SmartPaymentService


@dataclass(frozen=True)
class CompanyContext:
    company_id: str
    actor_id: UUID | None = None


async def get_company_context(
    x_company_id: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> CompanyContext:
    """
    Resolve the company and actor headers.

    Declared async so it runs in the request task: the log context it sets is
    inherited by the sync route running in the threadpool.
    """
    if not x_company_id or not x_company_id.strip():
        raise HTTPException(status_code=400, detail="X-Company-Id header is required")
    actor_id = None
    if x_actor_id is not None and x_actor_id.strip():
        try:
            actor_id = UUID(x_actor_id.strip())
        except ValueError:
            raise HTTPException(
                status_code=400, detail="X-Actor-Id header must be a UUID"
            ) from None
    ctx = CompanyContext(company_id=x_company_id.strip(), actor_id=actor_id)
    LogContext.set(
        company_id=ctx.company_id,
        actor_id=str(actor_id) if actor_id is not None else None,
    )
    return ctx


def get_db_session(request: Request) -> Generator[Session, None, None]:
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_smart_payment_service(
    request: Request,
    session: Session = Depends(get_db_session),
) -> SmartPaymentService:
    return SmartPaymentService(
        session,
        request.app.state.config,
        request.app.state.clock,
    )
