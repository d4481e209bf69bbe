from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, Response

from peanuts import db as db_module
from peanuts.config import Settings
from peanuts.dependencies import page_visibility
from peanuts.metrics import photo_not_found_total
from peanuts.services import photos as photo_service
from peanuts.services.photos import Page, Published
from peanuts.services.templates import render, tag_url

settings = Settings()
logger = logging.getLogger(__name__)

router = APIRouter()


def _page_limit(limit: int | None) -> int:
    if limit is not None and limit < settings.max_photos_per_page:
        return limit
    return settings.default_photos_per_page


def _query_string(limit: int | None, offset: int | None) -> str:
    params = {"limit": limit, "offset": offset}
    return urlencode({k: v for k, v in params.items() if v is not None})


async def _gallery(
    tag: str | None,
    limit: int | None,
    offset: int | None,
    published: Published,
) -> HTMLResponse:
    tagged = [tag] if tag is not None else None
    page_limit = _page_limit(limit)

    def _db_call():
        with db_module.SessionLocal() as db:
            items = photo_service.get_paginated_photos(
                db, page_limit, Page.from_offset(offset), tagged, published
            )
            newer, older = photo_service.get_photo_pagination_ids(
                db, items, tagged, published
            )
            tags = photo_service.get_photo_tags_with_counts(db, tagged, published)
            return items, newer, older, tags

    items, newer, older, tags = await asyncio.to_thread(_db_call)

    body = render(
        "gallery.html",
        title=f"tagged {tag}" if tag is not None else "gallery",
        photos=items,
        tags=tags,
        newest_qs=_query_string(limit, None),
        newer_qs=_query_string(limit, -newer - 1) if newer is not None else None,
        older_qs=_query_string(limit, older) if older is not None else None,
        oldest_qs=_query_string(limit, -1),
    )
    return HTMLResponse(body)


@router.get("/", response_class=HTMLResponse)
async def gallery(
    limit: int | None = Query(None, ge=0),
    offset: int | None = None,
    published: Published = Depends(page_visibility),
):
    return await _gallery(None, limit, offset, published)


@router.get("/tagged/{tag}", response_class=HTMLResponse)
async def tagged_gallery(
    tag: str,
    limit: int | None = Query(None, ge=0),
    offset: int | None = None,
    published: Published = Depends(page_visibility),
):
    return await _gallery(tag, limit, offset, published)


async def _photo_page(photo_id: int, published: Published, template: str) -> HTMLResponse:
    def _db_call():
        with db_module.SessionLocal() as db:
            return photo_service.get_photo_by_id(db, photo_id, published)

    photo = await asyncio.to_thread(_db_call)
    if photo is None:
        photo_not_found_total.inc()
        body = render("not-found.html", title="not found")
        return HTMLResponse(body, status_code=404)

    body = render(template, title=f"photo #{photo_id}", photo=photo)
    return HTMLResponse(body)


@router.get("/photo/{photo_id}", response_class=HTMLResponse)
async def photo(photo_id: int, published: Published = Depends(page_visibility)):
    return await _photo_page(photo_id, published, "photo.html")


@router.get("/photo/{photo_id}/multi", response_class=HTMLResponse)
async def photo_multiple_times(
    photo_id: int, published: Published = Depends(page_visibility)
):
    """Render every source of a photo one after another."""
    return await _photo_page(photo_id, published, "single-photo-multiple-times.html")


@router.get("/sitemap.xml")
async def sitemap():
    """Sitemap of the public gallery: index, tag pages and photo pages."""

    def _db_call():
        with db_module.SessionLocal() as db:
            items = photo_service.get_sitemap_photos(db)
            tags = photo_service.get_photo_tags_with_counts(
                db, None, Published.ONLY_PUBLISHED
            )
            return items, tags

    items, tags = await asyncio.to_thread(_db_call)
    base = settings.base_url.rstrip("/")
    urls = [f"{base}/"]
    urls.extend(f"{base}{tag_url(name)}" for name, _count in tags)
    urls.extend(f"{base}/photo/{photo_id}" for photo_id, _tags in items)

    body = render("sitemap.xml", urls=urls)
    return Response(content=body, media_type="application/xml")
