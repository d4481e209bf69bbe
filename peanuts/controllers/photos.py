from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from peanuts import db as db_module
from peanuts import schemas
from peanuts.dependencies import ErrorResponse, api_visibility, require_secret_key
from peanuts.metrics import api_writes_total, photo_not_found_total
from peanuts.models import ErrorCode
from peanuts.services import photos as photo_service
from peanuts.services.photos import Published

logger = logging.getLogger(__name__)

router = APIRouter()


class CreatedResponse(BaseModel):
    id: int
    created: schemas.Photo | None


class UpdatedResponse(BaseModel):
    changed: bool
    previous: schemas.Photo
    current: schemas.Photo | None


class PublishedResponse(BaseModel):
    published: bool


def _not_found(what: str) -> HTTPException:
    photo_not_found_total.inc()
    err = ErrorResponse(code=ErrorCode.NOT_FOUND, message=f"{what} not found")
    return HTTPException(status_code=404, detail=err.model_dump())


@router.post(
    "/photos",
    status_code=201,
    response_model=CreatedResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def create_photo(
    payload: schemas.PhotoPayload, _key: str = Depends(require_secret_key)
):
    """Register a new, unpublished photo with its sources."""
    logger.debug("Received photo payload: %r", payload)

    def _db_call():
        with db_module.SessionLocal() as db:
            existing = photo_service.get_photo_by_file_stem(
                db, payload.file_stem, Published.ALL
            )
            if existing is not None:
                return existing, None
            photo_id = photo_service.insert_photo(db, payload)
            return None, photo_service.get_photo_by_id(db, photo_id, Published.ALL)

    existing, created = await asyncio.to_thread(_db_call)
    if existing is not None:
        return JSONResponse(
            status_code=409,
            content={
                "code": ErrorCode.CONFLICT.value,
                "reason": f"Photo with file stem {payload.file_stem} already exists.",
                "existing": existing.model_dump(),
            },
        )
    api_writes_total.labels(operation="create").inc()
    return CreatedResponse(id=created.id, created=created)


@router.get(
    "/photo/by-id/{photo_id}",
    response_model=schemas.Photo,
    responses={404: {"model": ErrorResponse}},
)
async def get_photo(photo_id: int, published: Published = Depends(api_visibility)):
    def _db_call():
        with db_module.SessionLocal() as db:
            return photo_service.get_photo_by_id(db, photo_id, published)

    photo = await asyncio.to_thread(_db_call)
    if photo is None:
        raise _not_found(f"Photo {photo_id}")
    return photo


@router.get(
    "/photo/by-filestem/{file_stem}",
    response_model=schemas.Photo,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_photo_by_file_stem(
    file_stem: str, _key: str = Depends(require_secret_key)
):
    def _db_call():
        with db_module.SessionLocal() as db:
            return photo_service.get_photo_by_file_stem(db, file_stem, Published.ALL)

    photo = await asyncio.to_thread(_db_call)
    if photo is None:
        raise _not_found(f"Photo {file_stem}")
    return photo


@router.post(
    "/photo/by-filestem/{file_stem}",
    response_model=UpdatedResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def update_photo(
    file_stem: str,
    payload: schemas.PhotoPayload,
    _key: str = Depends(require_secret_key),
):
    """Update metadata and, when given, sources of an existing photo."""
    logger.debug("Received payload: %r", payload)

    def _db_call():
        with db_module.SessionLocal() as db:
            old = photo_service.get_photo_by_file_stem(db, file_stem, Published.ALL)
            if old is None:
                return None, False, None
            changed = photo_service.update_photo(db, old, payload)
            return old, changed, photo_service.get_photo_by_id(db, old.id, Published.ALL)

    previous, changed, current = await asyncio.to_thread(_db_call)
    if previous is None:
        raise _not_found(f"Photo {file_stem}")
    if changed:
        api_writes_total.labels(operation="update").inc()
    return UpdatedResponse(changed=changed, previous=previous, current=current)


@router.post(
    "/photo/by-id/{photo_id}/published",
    response_model=PublishedResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def update_photo_published(
    photo_id: int,
    published: bool = Body(...),
    _key: str = Depends(require_secret_key),
):
    def _db_call() -> bool:
        with db_module.SessionLocal() as db:
            return photo_service.set_photo_published_state(db, photo_id, published)

    if not await asyncio.to_thread(_db_call):
        raise _not_found(f"Photo {photo_id}")
    api_writes_total.labels(operation="published").inc()
    return PublishedResponse(published=published)


@router.post(
    "/photo/by-id/{photo_id}/height-offset",
    status_code=204,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def update_photo_height_offset(
    photo_id: int,
    height_offset: int = Body(..., ge=0, le=100),
    _key: str = Depends(require_secret_key),
):
    def _db_call() -> bool:
        with db_module.SessionLocal() as db:
            return photo_service.set_photo_height_offset(db, photo_id, height_offset)

    if not await asyncio.to_thread(_db_call):
        raise _not_found(f"Photo {photo_id}")
    api_writes_total.labels(operation="height_offset").inc()
    return Response(status_code=204)


@router.delete(
    "/photo/by-id/{photo_id}",
    status_code=204,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def delete_photo(photo_id: int, _key: str = Depends(require_secret_key)):
    def _db_call() -> bool:
        with db_module.SessionLocal() as db:
            return photo_service.delete_photo(db, photo_id)

    if not await asyncio.to_thread(_db_call):
        raise _not_found(f"Photo {photo_id}")
    api_writes_total.labels(operation="delete").inc()
    return Response(status_code=204)
