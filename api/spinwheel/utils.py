import hashlib
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from starlette.requests import Request

from .models import RequestContext

_email_adapter = TypeAdapter(EmailStr)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def gen_id(nbytes: int = 16) -> str:
    # 32 hex chars for the default size
    return secrets.token_hex(nbytes)


def hash_user_data(value: str) -> str:
    """SHA-256 of the lowercased, trimmed value, as Meta expects for user_data."""
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


def check_email(value: str) -> Optional[str]:
    """Return the normalized address, or None when it is not a valid email."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return _email_adapter.validate_python(value.strip())
    except ValidationError:
        return None


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        val = request.headers.get(header)
        if val:
            return val
    return request.client.host if request.client else None


def facebook_click_id(request: Request) -> Optional[str]:
    fbclid = request.query_params.get("fbclid")
    if fbclid:
        return f"fb.1.{int(time.time() * 1000)}.{fbclid}"
    return request.cookies.get("_fbc")


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
        fbc=facebook_click_id(request),
        fbp=request.cookies.get("_fbp"),
    )
