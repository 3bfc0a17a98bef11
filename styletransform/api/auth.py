# styletransform/api/auth.py
from __future__ import annotations

import logging
from typing import Optional

import requests
from fastapi import Header, HTTPException

from styletransform.config import Settings, settings

log = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


def verify_token(
    token: str,
    cfg: Settings = settings,
    session: Optional[requests.Session] = None,
) -> str:
    """
    Resolve a bearer token to a caller id.

    With IDENTITY_VERIFY_URL set, the token is POSTed there and the response's
    `uid` is the caller. Otherwise, if dev tokens are allowed, the token itself is the uid.
    """
    token = (token or "").strip()
    if not token:
        raise IdentityError("empty token")

    if cfg.IDENTITY_VERIFY_URL:
        http = session or requests
        resp = http.post(
            cfg.IDENTITY_VERIFY_URL,
            json={"token": token},
            timeout=cfg.IDENTITY_TIMEOUT_SECS,
        )
        if resp.status_code != 200:
            raise IdentityError(f"identity service returned {resp.status_code}")
        uid = (resp.json() or {}).get("uid")
        if not uid:
            raise IdentityError("identity service returned no uid")
        return str(uid)

    if cfg.AUTH_ALLOW_DEV_TOKENS:
        return token

    raise IdentityError("identity verification is not configured")


def get_caller_id(authorization: Optional[str] = Header(default=None)) -> str:
    """FastAPI dependency: `Authorization: Bearer <token>` -> verified caller id."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="No token provided")
    try:
        return verify_token(authorization[7:])
    except (IdentityError, requests.RequestException, ValueError) as e:
        log.info("event=auth.reject error=%s", e)
        raise HTTPException(status_code=401, detail="Invalid token")
