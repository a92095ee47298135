from fastapi import Header, HTTPException, Request

from app.db import SessionLocal
from app.services.common import SessionContext


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def get_session_context(
    request: Request, x_user_id: str | None = Header(default=None)
) -> SessionContext:
    """Build the caller context from the identity resolved upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return SessionContext(owner_id=x_user_id.strip(), client_ip=client_ip(request))


__all__ = ["client_ip", "get_db", "get_session_context"]
