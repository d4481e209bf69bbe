"""Administrative commands for the photo catalog.

Usage:
  peanuts-admin add sunset --tag nature --source 800x600=/img/sunset-800.jpg
  peanuts-admin upload ./sunset.tif
  peanuts-admin set-published 12 true
  peanuts-admin secret-key generate
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from peanuts import db as db_module
from peanuts import schemas
from peanuts.config import Settings
from peanuts.db import init_db
from peanuts.logger import setup_logging
from peanuts.services import imaging, storage
from peanuts.services import photos as photo_service
from peanuts.services import secret_keys
from peanuts.services.photos import Page, Published

logger = logging.getLogger("peanuts.cli")


class CommandError(Exception):
    """An operator-facing failure; the message is printed and exit code is 1."""


def parse_source(value: str) -> schemas.Source:
    """Parse ``WIDTHxHEIGHT=URL``."""
    size, sep, url = value.partition("=")
    width, x, height = size.lower().partition("x")
    if not sep or not x:
        raise argparse.ArgumentTypeError(
            f"invalid source {value!r}, expected WIDTHxHEIGHT=URL"
        )
    try:
        return schemas.Source(width=int(width), height=int(height), url=url)
    except (ValueError, ValidationError) as exc:
        raise argparse.ArgumentTypeError(f"invalid source {value!r}: {exc}") from exc


def parse_bool(value: str) -> bool:
    text = value.strip().lower()
    if text in {"1", "true", "yes", "y"}:
        return True
    if text in {"0", "false", "no", "n"}:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean {value!r}")


def parse_height_offset(value: str) -> int:
    try:
        offset = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid height offset {value!r}") from exc
    if not 0 <= offset <= 100:
        raise argparse.ArgumentTypeError("height offset must be within 0..100")
    return offset


def _payload(
    args: argparse.Namespace,
    file_stem: str,
    old: schemas.Photo | None = None,
) -> schemas.PhotoPayload:
    """Build a payload from the flags; on update, omitted flags keep ``old``'s values."""

    def _given(value, attr: str):
        if value is None and old is not None:
            return getattr(old, attr)
        return value

    try:
        return schemas.PhotoPayload(
            file_stem=file_stem,
            title=_given(args.title, "title"),
            taken_timestamp=_given(args.taken_timestamp, "taken_timestamp"),
            tags=_given(args.tag, "tags") or [],
            sources=args.source,
        )
    except ValidationError as exc:
        raise CommandError(f"invalid photo: {exc}") from exc


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_add(args: argparse.Namespace) -> None:
    payload = _payload(args, args.file_stem)
    with db_module.SessionLocal() as db:
        existing = photo_service.get_photo_by_file_stem(db, payload.file_stem, Published.ALL)
        if existing is not None:
            raise CommandError(
                f"Photo with file stem {payload.file_stem} already exists (id {existing.id})"
            )
        photo_id = photo_service.insert_photo(
            db,
            payload,
            published=args.published,
            height_offset=args.height_offset,
        )
    print(photo_id)


def cmd_update(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        old = photo_service.get_photo_by_file_stem(db, args.file_stem, Published.ALL)
        if old is None:
            raise CommandError(f"Photo with file stem {args.file_stem} not found")
        changed = photo_service.update_photo(db, old, _payload(args, args.file_stem, old))
    print("changed" if changed else "unchanged")


async def _upload_renditions(
    image, file_stem: str, settings: Settings
) -> list[schemas.Source]:
    await storage.init_storage(settings)
    try:
        renditions = await imaging.transcode(image)
        sources = [
            schemas.Source(
                width=r.width,
                height=r.height,
                url=await storage.upload_rendition(file_stem, r.width, r.height, r.data),
            )
            for r in renditions
        ]
    except storage.StorageError as exc:
        raise CommandError(str(exc)) from exc
    finally:
        await storage.close_client()
    logger.info("All images uploaded")
    return sources


async def _upload(args: argparse.Namespace, settings: Settings) -> None:
    path = Path(args.path)
    file_stem = path.stem

    with db_module.SessionLocal() as db:
        existing = photo_service.get_photo_by_file_stem(db, file_stem, Published.ALL)
    if existing is not None and not args.update:
        raise CommandError(f"Photo with file stem {file_stem} already exists")
    if existing is None and args.update:
        raise CommandError(f"Photo with file stem {file_stem} not found")

    try:
        image = imaging.open_image(path)
    except OSError as exc:
        raise CommandError(f"Could not read {path}: {exc}") from exc

    try:
        try:
            metadata = imaging.parse_xmp(imaging.read_xmp_packet(image))
        except imaging.MetadataError as exc:
            raise CommandError(f"Could not read {path}: {exc}") from exc

        sources = None
        if args.only_update_metadata:
            logger.info("Not uploading photos")
        else:
            sources = await _upload_renditions(image, file_stem, settings)
    finally:
        image.close()

    payload = schemas.PhotoPayload(
        file_stem=file_stem,
        title=metadata.title,
        taken_timestamp=metadata.create_date,
        tags=metadata.tags,
        sources=sources,
    )
    with db_module.SessionLocal() as db:
        if existing is None:
            print(photo_service.insert_photo(db, payload))
        else:
            changed = photo_service.update_photo(db, existing, payload)
            print("changed" if changed else "unchanged")


def cmd_dump_xmp(args: argparse.Namespace) -> None:
    path = Path(args.path)
    try:
        metadata = imaging.get_metadata(path)
    except (OSError, imaging.MetadataError) as exc:
        raise CommandError(f"Could not read {path}: {exc}") from exc

    logger.info("Create Date: %s", metadata.create_date)
    logger.info("Title: %s", metadata.title)
    logger.info("Tags: %s", metadata.tags)
    out = Path(args.output_dir) / f"xmp.{path.name}.xml"
    out.write_text(metadata.xml, encoding="utf-8")
    _print_json(
        {
            "create_date": metadata.create_date,
            "title": metadata.title,
            "tags": metadata.tags,
            "xmp_file": str(out),
        }
    )


def cmd_set_published(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        if not photo_service.set_photo_published_state(db, args.photo_id, args.published):
            raise CommandError(f"Photo {args.photo_id} not found")
    print(json.dumps({"published": args.published}))


def cmd_set_height_offset(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        if not photo_service.set_photo_height_offset(db, args.photo_id, args.height_offset):
            raise CommandError(f"Photo {args.photo_id} not found")


def cmd_delete(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        if not photo_service.delete_photo(db, args.photo_id):
            raise CommandError(f"Photo {args.photo_id} not found")
    print("deleted")


def cmd_show(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        photo = photo_service.get_photo_by_id(db, args.photo_id, Published.ALL)
    if photo is None:
        raise CommandError(f"Photo {args.photo_id} not found")
    _print_json(photo.model_dump())


def cmd_list(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        items = photo_service.get_paginated_photos(
            db, args.limit, Page.latest(), args.tag or None, Published.ALL
        )
    _print_json([p.model_dump() for p in items])


def cmd_secret_key(args: argparse.Namespace) -> None:
    with db_module.SessionLocal() as db:
        if args.action == "generate":
            print(secret_keys.create_secret_key(db))
        elif args.action == "add":
            if not args.key:
                raise CommandError("secret-key add needs KEY")
            secret_keys.add_secret_key(db, args.key)
            print("added")
        elif args.action == "revoke":
            if not args.key:
                raise CommandError("secret-key revoke needs KEY")
            if not secret_keys.revoke_secret_key(db, args.key):
                raise CommandError("Secret key not found")
            print("revoked")
        else:
            for key in secret_keys.list_secret_keys(db):
                print(key)


def _add_metadata_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file_stem", metavar="FILE_STEM")
    parser.add_argument("--title")
    parser.add_argument("--taken-timestamp")
    parser.add_argument("--tag", action="append", help="may be repeated")
    parser.add_argument(
        "--source",
        action="append",
        type=parse_source,
        help="WIDTHxHEIGHT=URL, may be repeated",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peanuts-admin", description="Manage the photo catalog"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Register a photo and its sources")
    _add_metadata_args(add)
    add.add_argument("--published", action="store_true")
    add.add_argument("--height-offset", type=parse_height_offset, default=50)
    add.set_defaults(func=cmd_add)

    upd = sub.add_parser("update", help="Update metadata of a photo by file stem")
    _add_metadata_args(upd)
    upd.set_defaults(func=cmd_update)

    upload = sub.add_parser("upload", help="Transcode, upload and register a TIFF")
    upload.add_argument("path", metavar="PATH")
    upload.add_argument("--update", action="store_true", help="update an existing photo")
    upload.add_argument("--only-update-metadata", action="store_true")
    upload.set_defaults(func=None)

    dump = sub.add_parser("dump-xmp", help="Print XMP metadata of a TIFF")
    dump.add_argument("path", metavar="PATH")
    dump.add_argument("--output-dir", default=".")
    dump.set_defaults(func=cmd_dump_xmp)

    pub = sub.add_parser("set-published", help="Publish or unpublish a photo")
    pub.add_argument("photo_id", type=int, metavar="PHOTO_ID")
    pub.add_argument("published", type=parse_bool, metavar="PUBLISHED")
    pub.set_defaults(func=cmd_set_published)

    off = sub.add_parser("set-height-offset", help="Set the crop anchor of a photo")
    off.add_argument("photo_id", type=int, metavar="PHOTO_ID")
    off.add_argument("height_offset", type=parse_height_offset, metavar="HEIGHT_OFFSET")
    off.set_defaults(func=cmd_set_height_offset)

    rm = sub.add_parser("delete", help="Delete a photo and its sources")
    rm.add_argument("photo_id", type=int, metavar="PHOTO_ID")
    rm.set_defaults(func=cmd_delete)

    show = sub.add_parser("show", help="Print a photo as JSON")
    show.add_argument("photo_id", type=int, metavar="PHOTO_ID")
    show.set_defaults(func=cmd_show)

    lst = sub.add_parser("list", help="Print the newest photos as JSON")
    lst.add_argument("--tag", action="append")
    lst.add_argument("--limit", type=int, default=20)
    lst.set_defaults(func=cmd_list)

    keys = sub.add_parser("secret-key", help="Manage secret keys")
    keys.add_argument("action", choices=["generate", "add", "revoke", "list"])
    keys.add_argument("key", nargs="?", metavar="KEY")
    keys.set_defaults(func=cmd_secret_key)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = Settings()
    init_db(settings)

    try:
        if args.command == "upload":
            asyncio.run(_upload(args, settings))
        else:
            args.func(args)
    except CommandError as exc:
        logger.error("%s", exc)
        return 1
    except IntegrityError as exc:
        logger.error("Constraint violation: %s", exc.orig)
        return 1
    except SQLAlchemyError as exc:
        logger.error("Database error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
