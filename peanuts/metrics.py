from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Rendered HTML pages and sitemaps, labelled by template name
pages_rendered_total = Counter(
    "pages_rendered_total", "Total rendered pages", ["template"]
)

# Photos not found (missing or unpublished)
photo_not_found_total = Counter(
    "photo_not_found_total", "Total photo lookups that found nothing"
)

# Authenticated API writes, labelled by operation
api_writes_total = Counter(
    "api_writes_total", "Total photo API writes", ["operation"]
)

# Database errors surfaced to HTTP clients, labelled by kind
db_errors_total = Counter(
    "db_errors_total", "Database errors returned to clients", ["kind"]
)

# Transcoding happens in the CLI; buckets cover large TIFFs
_transcode_buckets = (
    0.1,
    0.5,
    1.0,
    2.0,
    5.0,
    10.0,
)

transcode_seconds = Histogram(
    "transcode_seconds", "Photo rendition transcoding latency", buckets=_transcode_buckets
)

__all__ = [
    "pages_rendered_total",
    "photo_not_found_total",
    "api_writes_total",
    "db_errors_total",
    "transcode_seconds",
]
