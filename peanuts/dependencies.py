from __future__ import annotations

import asyncio
import logging

from fastapi import Cookie, Header, HTTPException
from pydantic import BaseModel

from peanuts import db as db_module
from peanuts.models import ErrorCode
from peanuts.services.photos import Published
from peanuts.services.secret_keys import valid_secret_key

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: str
    message: str


def _bearer_token(authorization: str) -> str | None:
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token.strip()


async def _is_valid_key(secret_key: str | None) -> bool:
    if not secret_key:
        return False

    def _db_call() -> bool:
        with db_module.SessionLocal() as db:
            return valid_secret_key(db, secret_key)

    return await asyncio.to_thread(_db_call)


async def require_secret_key(
    authorization: str | None = Header(None, alias="Authorization"),
) -> str:
    """Reject the request unless it carries ``Bearer <valid secret key>``."""
    if authorization is None:
        err = ErrorResponse(
            code=ErrorCode.UNAUTHORIZED, message="Missing Authorization header"
        )
        raise HTTPException(status_code=401, detail=err.model_dump())

    token = _bearer_token(authorization)
    if not await _is_valid_key(token):
        err = ErrorResponse(code=ErrorCode.FORBIDDEN, message="Invalid secret key")
        raise HTTPException(status_code=403, detail=err.model_dump())
    return token


async def api_visibility(
    authorization: str | None = Header(None, alias="Authorization"),
) -> Published:
    """Anonymous API callers only see published photos."""
    if authorization is None:
        return Published.ONLY_PUBLISHED
    if await _is_valid_key(_bearer_token(authorization)):
        return Published.ALL
    return Published.ONLY_PUBLISHED


async def page_visibility(
    secret_key: str | None = Cookie(None, alias="secret-key"),
) -> Published:
    """HTML visitors holding a valid ``secret-key`` cookie see everything."""
    if secret_key is None:
        return Published.ONLY_PUBLISHED
    logger.info("secret key found")
    if await _is_valid_key(secret_key):
        logger.info("valid")
        return Published.ALL
    logger.info("invalid")
    return Published.ONLY_PUBLISHED
