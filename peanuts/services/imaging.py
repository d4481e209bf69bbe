"""Rendition transcoding and XMP metadata extraction for photo ingestion."""
from __future__ import annotations

import asyncio
import io
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from peanuts.metrics import transcode_seconds

logger = logging.getLogger(__name__)

# Longest-edge targets, largest first
RENDITION_SIZES = tuple(range(1800, 299, -100))
JPEG_QUALITY = 80
XMP_TAG = 700

NS = {
    "x": "adobe:ns:meta/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "dc": "http://purl.org/dc/elements/1.1/",
    "xmp": "http://ns.adobe.com/xap/1.0/",
}


class MetadataError(ValueError):
    """Raised when a file carries no usable XMP metadata."""


@dataclass
class XmpMetadata:
    xml: str
    create_date: str
    title: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class Rendition:
    data: bytes
    width: int
    height: int


def open_image(path: Path) -> Image.Image:
    image = Image.open(path)
    image.load()
    return image


def read_xmp_packet(image: Image.Image) -> str:
    """Return the raw XMP packet stored in a TIFF's tag 700."""
    if image.format != "TIFF":
        raise MetadataError(f"Unsupported format: {image.format}")
    raw = image.tag_v2.get(XMP_TAG)
    if raw is None:
        raise MetadataError("No XMP tag in file")
    if isinstance(raw, tuple) and len(raw) == 1 and isinstance(raw[0], bytes):
        raw = raw[0]
    elif isinstance(raw, (tuple, list)):
        raw = bytes(raw)
    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MetadataError("XMP tag had invalid UTF-8 data") from exc
    return str(raw)


def _first_li(element: ET.Element | None, container: str) -> list[str]:
    if element is None:
        return []
    return [
        (li.text or "").strip()
        for li in element.findall(f"rdf:{container}/rdf:li", NS)
        if (li.text or "").strip()
    ]


def parse_xmp(xml: str) -> XmpMetadata:
    """Pick create date, title and subject tags from the first description
    that has a create date."""
    try:
        root = ET.fromstring(xml.strip().strip("\x00"))
    except ET.ParseError as exc:
        raise MetadataError("Failed to parse XMP data") from exc

    create_attr = f"{{{NS['xmp']}}}CreateDate"
    for desc in root.iter(f"{{{NS['rdf']}}}Description"):
        create_date = desc.get(create_attr)
        if create_date is None:
            node = desc.find("xmp:CreateDate", NS)
            create_date = node.text.strip() if node is not None and node.text else None
        if not create_date:
            continue
        titles = _first_li(desc.find("dc:title", NS), "Alt")
        tags = _first_li(desc.find("dc:subject", NS), "Bag")
        return XmpMetadata(
            xml=xml,
            create_date=create_date,
            title=titles[0] if titles else None,
            tags=tags,
        )
    raise MetadataError("No RDF description with a create date in XMP metadata")


def get_metadata(path: Path) -> XmpMetadata:
    with Image.open(path) as image:
        return parse_xmp(read_xmp_packet(image))


def target_sizes(width: int, height: int) -> list[int]:
    longest = max(width, height)
    return [size for size in RENDITION_SIZES if size <= longest]


def encode_jpeg(image: Image.Image) -> Rendition:
    rgb = image.convert("RGB")
    buf = io.BytesIO()
    rgb.save(buf, "JPEG", quality=JPEG_QUALITY, progressive=True, optimize=True)
    return Rendition(data=buf.getvalue(), width=rgb.width, height=rgb.height)


def render_size(image: Image.Image, size: int) -> Rendition:
    """Resize to fit a ``size``x``size`` box, keeping the aspect ratio."""
    start = time.perf_counter()
    logger.info("Started resizing image to %spx", size)
    resized = image.copy()
    resized.thumbnail((size, size), Image.Resampling.LANCZOS)
    rendition = encode_jpeg(resized)
    elapsed = time.perf_counter() - start
    transcode_seconds.observe(elapsed)
    logger.info("Finished image of size %spx in %.2fs", size, elapsed)
    return rendition


async def transcode(image: Image.Image) -> list[Rendition]:
    """Produce every rendition concurrently in worker threads."""
    sizes = target_sizes(image.width, image.height)
    return list(
        await asyncio.gather(
            *(asyncio.to_thread(render_size, image, size) for size in sizes)
        )
    )
