"""Photo catalog queries.

All functions take an open SQLAlchemy session; write helpers commit their own
transaction and let database errors (``IntegrityError`` for constraint
violations, ``OperationalError`` for connectivity) propagate to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from sqlalchemy import delete, distinct, func, insert, select, true, update
from sqlalchemy.orm import Session, selectinload

from peanuts import schemas
from peanuts.models import Photo, Source

logger = logging.getLogger(__name__)


class Published(Enum):
    ALL = "all"
    ONLY_PUBLISHED = "only_published"


class PageKind(Enum):
    LATEST = "latest"
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class Page:
    """Keyset pagination anchor.

    ``BEFORE`` pages walk towards older photos (ids below ``photo_id``),
    ``AFTER`` pages towards newer ones (ids above ``photo_id``).
    """

    kind: PageKind = PageKind.LATEST
    photo_id: int | None = None

    @classmethod
    def latest(cls) -> "Page":
        return cls()

    @classmethod
    def before(cls, photo_id: int) -> "Page":
        return cls(PageKind.BEFORE, photo_id)

    @classmethod
    def after(cls, photo_id: int) -> "Page":
        return cls(PageKind.AFTER, photo_id)

    @classmethod
    def from_offset(cls, offset: int | None) -> "Page":
        """Decode the ``offset`` query value: ``n >= 0`` is before ``n``,
        ``n < 0`` is after ``-n - 1``."""
        if offset is None:
            return cls.latest()
        if offset >= 0:
            return cls.before(offset)
        return cls.after(-offset - 1)

    @property
    def ascending(self) -> bool:
        return self.kind is PageKind.AFTER


def _dialect(db: Session) -> str:
    return db.get_bind().dialect.name


def _tag_elements(dialect: str):
    """Return a table-valued expansion of ``photos.tags`` and its value column."""
    if dialect == "postgresql":
        expanded = func.unnest(Photo.tags).table_valued("tag").render_derived()
        return expanded, expanded.c.tag
    expanded = func.json_each(Photo.tags).table_valued("value")
    return expanded, expanded.c.value


def _tagged_clause(dialect: str, tags: list[str]):
    if dialect == "postgresql":
        return Photo.tags.contains(tags)
    expanded, value = _tag_elements(dialect)
    matched = (
        select(func.count(distinct(value)))
        .select_from(expanded)
        .where(value.in_(tags))
        .scalar_subquery()
    )
    return matched == len(set(tags))


def _filtered(stmt, dialect: str, tagged: list[str] | None, published: Published):
    if tagged:
        stmt = stmt.where(_tagged_clause(dialect, tagged))
    if published is Published.ONLY_PUBLISHED:
        stmt = stmt.where(Photo.published.is_(True))
    return stmt


def _photo_select():
    return (
        select(Photo)
        .options(selectinload(Photo.sources))
        .execution_options(populate_existing=True)
    )


def get_paginated_photos(
    db: Session,
    limit: int,
    page: Page,
    tagged: list[str] | None,
    published: Published,
) -> list[schemas.Photo]:
    logger.info("Page: %s", page)
    stmt = _filtered(_photo_select(), _dialect(db), tagged, published)
    if page.kind is PageKind.BEFORE:
        stmt = stmt.where(Photo.id < page.photo_id)
    elif page.kind is PageKind.AFTER:
        stmt = stmt.where(Photo.id > page.photo_id)
    order = Photo.id.asc() if page.ascending else Photo.id.desc()
    rows = db.execute(stmt.order_by(order).limit(limit)).scalars().all()

    photos = [schemas.Photo.model_validate(row) for row in rows]
    photos.sort(key=lambda p: p.id, reverse=True)
    return photos


def get_photo_pagination_ids(
    db: Session,
    photos: list[schemas.Photo],
    tagged: list[str] | None,
    published: Published,
) -> tuple[int | None, int | None]:
    """Return ``(newer, older)`` anchors, ``None`` where nothing lies beyond."""
    if not photos:
        return None, None

    first, last = photos[0], photos[-1]
    newer = first.id if get_paginated_photos(
        db, 1, Page.after(first.id), tagged, published
    ) else None
    older = last.id if get_paginated_photos(
        db, 1, Page.before(last.id), tagged, published
    ) else None
    return newer, older


def get_photo_by_id(
    db: Session, photo_id: int, published: Published
) -> schemas.Photo | None:
    stmt = _filtered(_photo_select(), _dialect(db), None, published)
    row = db.execute(stmt.where(Photo.id == photo_id)).scalars().first()
    return schemas.Photo.model_validate(row) if row is not None else None


def get_photo_by_file_stem(
    db: Session, file_stem: str, published: Published
) -> schemas.Photo | None:
    stmt = _filtered(_photo_select(), _dialect(db), None, published)
    stmt = stmt.where(Photo.file_stem == file_stem).order_by(Photo.id.desc())
    row = db.execute(stmt.limit(1)).scalars().first()
    return schemas.Photo.model_validate(row) if row is not None else None


def get_photo_tags_with_counts(
    db: Session, tagged: list[str] | None, published: Published
) -> list[tuple[str, int]]:
    dialect = _dialect(db)
    expanded, tag = _tag_elements(dialect)
    stmt = (
        select(tag.label("tag"), func.count().label("count"))
        .select_from(Photo)
        .join(expanded, true())
    )
    stmt = _filtered(stmt, dialect, tagged, published)
    stmt = stmt.group_by(tag).order_by(tag)
    return [(name, int(count)) for name, count in db.execute(stmt).all()]


def get_sitemap_photos(db: Session) -> list[tuple[int, list[str]]]:
    """Ids and tags of every published photo, newest first."""
    stmt = (
        select(Photo.id, Photo.tags)
        .where(Photo.published.is_(True))
        .order_by(Photo.id.desc())
    )
    return [(photo_id, list(tags or [])) for photo_id, tags in db.execute(stmt).all()]


def _source_rows(photo_id: int, sources: Iterable[schemas.Source]) -> list[dict]:
    return [
        {"photo_id": photo_id, "width": s.width, "height": s.height, "url": s.url}
        for s in sources
    ]


def insert_photo(
    db: Session,
    payload: schemas.PhotoPayload,
    *,
    published: bool = False,
    height_offset: int = 50,
) -> int:
    """Insert a photo and its sources in one transaction and return its id."""
    photo = Photo(
        file_stem=payload.file_stem,
        title=payload.title,
        taken_timestamp=payload.taken_timestamp,
        height_offset=height_offset,
        tags=list(payload.tags),
        published=published,
    )
    try:
        db.add(photo)
        db.flush()
        rows = _source_rows(photo.id, payload.sources or [])
        if rows:
            db.execute(insert(Source), rows)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Inserted photo %s (%s)", photo.id, photo.file_stem)
    return photo.id


def _source_key(source: schemas.Source) -> tuple[int, int, str]:
    return source.width, source.height, source.url


def update_photo(
    db: Session, old_photo: schemas.Photo, new_photo: schemas.PhotoPayload
) -> bool:
    """Apply the fields of ``new_photo`` that differ from ``old_photo``.

    Sources are replaced wholesale when given and different. Returns whether
    anything changed.
    """
    values: dict = {}
    if old_photo.taken_timestamp != new_photo.taken_timestamp:
        logger.info("Taken timestamp differs, updating")
        values["taken_timestamp"] = new_photo.taken_timestamp
    if old_photo.title != new_photo.title:
        logger.info("Title differs, updating")
        values["title"] = new_photo.title
    if old_photo.tags != new_photo.tags:
        logger.info("Tags differ, updating")
        values["tags"] = list(new_photo.tags)

    replace_sources = new_photo.sources is not None and sorted(
        map(_source_key, old_photo.sources)
    ) != sorted(map(_source_key, new_photo.sources))

    if not values and not replace_sources:
        return False

    try:
        if values:
            db.execute(update(Photo).where(Photo.id == old_photo.id).values(**values))
        if replace_sources:
            logger.info("Sources differ, updating")
            db.execute(delete(Source).where(Source.photo_id == old_photo.id))
            rows = _source_rows(old_photo.id, new_photo.sources)
            if rows:
                db.execute(insert(Source), rows)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return True


def _update_one(db: Session, photo_id: int, **values) -> bool:
    try:
        result = db.execute(
            update(Photo)
            .where(Photo.id == photo_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount > 0


def set_photo_published_state(db: Session, photo_id: int, published: bool) -> bool:
    return _update_one(db, photo_id, published=published)


def set_photo_height_offset(db: Session, photo_id: int, height_offset: int) -> bool:
    return _update_one(db, photo_id, height_offset=height_offset)


def delete_photo(db: Session, photo_id: int) -> bool:
    """Delete a photo; its sources go with it through ``ON DELETE CASCADE``."""
    try:
        result = db.execute(
            delete(Photo)
            .where(Photo.id == photo_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    if result.rowcount:
        logger.info("Deleted photo %s", photo_id)
    return result.rowcount > 0
