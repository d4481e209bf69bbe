"""Jinja2 environment used to render gallery pages and the sitemap."""
from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, select_autoescape

from peanuts.config import Settings
from peanuts.metrics import pages_rendered_total

logger = logging.getLogger(__name__)

_env: Environment | None = None
_cache_busting_string: str | None = None


def tag_url(tag: str) -> str:
    """Path of the gallery filtered by ``tag``."""
    return f"/tagged/{quote(tag, safe='')}"


def _read_cache_buster(template_dir: Path) -> str | None:
    path = template_dir / "cache-buster"
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    parts = data.split()
    return parts[0] if parts else None


def init_templates(cfg: Settings) -> None:
    """Load templates from ``cfg.template_path``."""
    global _env, _cache_busting_string
    template_dir = Path(cfg.template_path).resolve()
    if not template_dir.is_dir():
        raise RuntimeError(f"Template directory {template_dir} does not exist")

    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["tag_url"] = tag_url
    _env = env
    _cache_busting_string = _read_cache_buster(template_dir)
    logger.info("Templates loaded from %s", template_dir)


def render(name: str, **ctx) -> str:
    if _env is None:
        raise RuntimeError("Templates not initialized")
    ctx.setdefault("cache_busting_string", _cache_busting_string)
    body = _env.get_template(name).render(**ctx)
    pages_rendered_total.labels(template=name).inc()
    return body
