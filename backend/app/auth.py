from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from fastapi import Header, HTTPException, Request, status

from .config import Settings


def hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(8)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 120_000)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, _ = stored_hash.split("$", 1)
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored_hash)


def create_token(payload: dict, settings: Settings) -> str:
    exp = (datetime.now(timezone.utc) + timedelta(hours=settings.token_expire_hours)).timestamp()
    body = {**payload, "exp": exp}
    raw = json.dumps(body, separators=(",", ":")).encode()
    b64 = base64.urlsafe_b64encode(raw).decode().rstrip("=")
    sig = hmac.new(settings.secret_key.encode(), b64.encode(), hashlib.sha256).hexdigest()
    return f"{b64}.{sig}"


def decode_token(token: str, settings: Settings) -> dict:
    try:
        b64, sig = token.split(".")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    expected = hmac.new(settings.secret_key.encode(), b64.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(sig, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    padded = b64 + "=" * (-len(b64) % 4)
    payload = json.loads(base64.urlsafe_b64decode(padded.encode()).decode())
    if datetime.now(timezone.utc).timestamp() > payload.get("exp", 0):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    return payload


def get_current_user(request: Request, authorization: str = Header(default="")) -> dict:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication token required.")
    return decode_token(authorization.replace("Bearer ", "", 1), request.app.state.settings)


def require_role(*roles: str) -> Callable[..., dict]:
    allowed = set(roles)

    def guard(request: Request, authorization: str = Header(default="")) -> dict:
        user = get_current_user(request, authorization)
        if user.get("role") not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
        return user

    return guard
