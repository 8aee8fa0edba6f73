"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_ledger.context import ActorContext
from engagement_ledger.database import init_db
from engagement_ledger.services.fx_service import FxRateSource, HttpFxRateSource

PermissionChecker = Callable[[str | None, str], bool]


def allow_all(role: str | None, action: str) -> bool:
    """Default permission hook; role gating belongs to the identity layer."""
    return True


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything that escapes the route rolls back.
    """
    _, session_factory = init_db()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_fx_rate_source() -> FxRateSource:
    """Rate source used when pricing pay runs."""
    return HttpFxRateSource()


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_actor_context(
    request: Request,
    x_tenant_id: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_type: Annotated[str | None, Header()] = None,
    x_role: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """Build the actor context from identity headers."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return ActorContext(
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-ID"),
        actor_id=_parse_uuid(x_actor_id, "X-Actor-ID") if x_actor_id else None,
        actor_type=(x_actor_type or "INTERNAL").upper(),
        role=x_role,
        ip_address=request.client.host if request.client else None,
    )


def require_permission(action: str):
    """Dependency that checks the actor's role against the app's permission hook."""

    async def check(
        request: Request,
        ctx: Annotated[ActorContext, Depends(get_actor_context)],
    ) -> ActorContext:
        checker: PermissionChecker = getattr(request.app.state, "permission_checker", allow_all)
        if not checker(ctx.role, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action}",
            )
        return ctx

    return Depends(check)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Context = Annotated[ActorContext, Depends(get_actor_context)]
RateSourceDep = Annotated[FxRateSource, Depends(get_fx_rate_source)]
