from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from trackmystartup import models
from trackmystartup.config import settings
from trackmystartup.database import get_db
from trackmystartup.lifecycle.reconciler import InFlightGuard, LifecycleReconciler
from trackmystartup.lifecycle.records import Principal
from trackmystartup.lifecycle.status_model import UserRole
from trackmystartup.lifecycle.store import RecordStore
from trackmystartup.services.auth import decode_access_token, principal_from_claims
from trackmystartup.services.change_feed import InProcessChangeFeed
from trackmystartup.services.sql_gateway import SqlMutationGateway


def _token_url() -> str:
    if settings.api_prefix:
        prefix = settings.api_prefix.rstrip("/")
        return f"{prefix}/auth/token"
    return "/auth/token"


oauth2_optional = OAuth2PasswordBearer(tokenUrl=_token_url(), auto_error=False)

_DB_DEP = Depends(get_db)
_TOKEN_OPT_DEP = Depends(oauth2_optional)

# Shared across requests: one feed for the process, one in-flight guard per record id.
change_feed = InProcessChangeFeed()
in_flight_guard = InFlightGuard()


def get_change_feed() -> InProcessChangeFeed:
    return change_feed


_FEED_DEP = Depends(get_change_feed)


def get_gateway(db: Session = _DB_DEP, feed: InProcessChangeFeed = _FEED_DEP) -> SqlMutationGateway:
    return SqlMutationGateway(db, feed=feed)


_GATEWAY_DEP = Depends(get_gateway)


def get_reconciler(gateway: SqlMutationGateway = _GATEWAY_DEP) -> LifecycleReconciler:
    return LifecycleReconciler(
        gateway,
        store=RecordStore(duplicate_window_seconds=settings.duplicate_window_seconds),
        guard=in_flight_guard,
        documents_bucket=settings.documents_bucket,
    )


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    raw = request.headers.get("authorization") or request.headers.get("x-auth-token")
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_principal(
    request: Request,
    db: Session = _DB_DEP,
    token: Optional[str] = _TOKEN_OPT_DEP,
) -> Principal:
    if not token:
        token = _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    claims = decode_access_token(token)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    subject = str(claims.get("sub") or "")
    startup_ids = [
        row.id for row in db.query(models.Startup.id).filter(models.Startup.user_id == subject).all()
    ]
    principal = principal_from_claims(claims, startup_ids=startup_ids)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return principal


def request_context(request: Request) -> dict:
    """Request metadata recorded alongside audit events."""

    return {
        "request_id": request.headers.get("x-request-id"),
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def require_roles(*roles: UserRole) -> Callable:
    _CURRENT_PRINCIPAL_DEP = Depends(get_current_principal)

    def dependency(principal: Principal = _CURRENT_PRINCIPAL_DEP) -> Principal:
        # Admin has access to everything.
        if roles and not principal.has_role(*roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return dependency
