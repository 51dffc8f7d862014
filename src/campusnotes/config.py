"""Client configuration for campusnotes.

:class:`CampusNotesConfig` is a dataclass that captures every tuneable knob
exposed by the client.  Instances are passed to
:class:`~campusnotes.async_client.AsyncNotesClient` and to the lower-level
collaborators it wires together.

The module-level constant :data:`IMAGE_EXTENSION_MIMES` maps the image file
extensions the classifier accepts to their canonical MIME type.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# File-type constants
# ---------------------------------------------------------------------------

PDF_MIME = "application/pdf"

IMAGE_EXTENSION_MIMES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
}
"""Image extensions recognised when the declared MIME type is a placeholder."""

PLACEHOLDER_MIMES: frozenset[str] = frozenset({
    "text/plain",
    "application/octet-stream",
    "binary/octet-stream",
})
"""Declared MIME types that pickers report for binary files they could not
identify.  Parameters such as ``;charset=UTF-8`` are stripped before the
comparison."""


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass
class CampusNotesConfig:
    """Complete configuration for a campusnotes client.

    Every parameter has a sensible default except ``base_url`` and
    ``api_key``.

    Parameters
    ----------
    base_url:
        Root URL of the backend project (``https://<ref>.supabase.co``).
    api_key:
        Public (anon) API key sent as the ``apikey`` header.  Never logged.
    bucket:
        Object-storage bucket holding note files.
    notes_table:
        Record-store table holding note rows.
    profiles_table:
        Record-store table holding owner profiles.  A row must exist for the
        owner before a note can reference it.
    counter_rpc:
        Name of the backend function that atomically increments a counter
        column.  Called with ``row_id`` and ``counter`` arguments.
    cache_control:
        ``Cache-Control`` max-age (seconds, as a string) stored with each
        uploaded object.
    retry_max_attempts:
        Attempts per upload strategy before the chain moves on.
    retry_base_delay:
        Base delay (seconds) for exponential backoff between attempts.
    retry_max_delay:
        Upper cap (seconds) on a single backoff delay.
    retry_jitter:
        Randomly scale each delay to 50-100 % of its value.
    strategy_timeout_seconds:
        Per-attempt timeout for an upload strategy.
    timeout_seconds:
        HTTP request timeout for every backend call.
    probe_timeout_seconds:
        Upper bound on the connectivity check.
    probe_path:
        Path (relative to ``base_url``) requested by the connectivity probe.
    max_upload_bytes:
        Largest payload the materializer accepts.  Default is 50 MiB.
    token_refresh_margin_seconds:
        Refresh the access token when it expires within this many seconds.
    http_proxy:
        Optional HTTP/HTTPS proxy URL.
    metrics:
        Optional :class:`~campusnotes.observability.MetricsHook`.
    debug_dump_payload:
        Log a redacted dump of each backend request/response.
    """

    # ── Core ────────────────────────────────────────────────────────────
    base_url: str = ""

    api_key: str = ""

    # ── Backend layout ──────────────────────────────────────────────────
    bucket: str = "notes"

    notes_table: str = "notes"

    profiles_table: str = "profiles"

    counter_rpc: str = "increment_counter"

    cache_control: str = "3600"

    # ── Retry ───────────────────────────────────────────────────────────
    retry_max_attempts: int = 3

    retry_base_delay: float = 1.0

    retry_max_delay: float = 30.0

    retry_jitter: bool = False

    # ── Timeouts ────────────────────────────────────────────────────────
    strategy_timeout_seconds: float = 30.0

    timeout_seconds: float = 30.0

    probe_timeout_seconds: float = 3.0

    probe_path: str = "/auth/v1/health"

    # ── Files ───────────────────────────────────────────────────────────
    max_upload_bytes: int = 50 * 1024 * 1024  # 50 MiB

    # ── Session ─────────────────────────────────────────────────────────
    token_refresh_margin_seconds: float = 300.0

    # ── HTTP ────────────────────────────────────────────────────────────
    http_proxy: str | None = None

    # ── Observability ──────────────────────────────────────────────────
    metrics: Any | None = None

    # ── Debug ───────────────────────────────────────────────────────────
    debug_dump_payload: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        from urllib.parse import urlparse

        self.base_url = self.base_url.rstrip("/")
        parsed = urlparse(self.base_url)
        if parsed.scheme == "http" and parsed.hostname not in (
            "localhost",
            "127.0.0.1",
            "::1",
        ):
            raise ValueError(
                f"base_url uses insecure HTTP for non-local host '{parsed.hostname}'. "
                "Use HTTPS to protect session tokens, or target localhost for testing."
            )

        if self.retry_max_attempts < 1:
            raise ValueError(f"retry_max_attempts must be >= 1, got {self.retry_max_attempts}")
        if self.retry_base_delay < 0:
            raise ValueError(f"retry_base_delay must be >= 0, got {self.retry_base_delay}")
        if self.retry_max_delay < 0:
            raise ValueError(f"retry_max_delay must be >= 0, got {self.retry_max_delay}")
        if self.strategy_timeout_seconds <= 0:
            raise ValueError(
                f"strategy_timeout_seconds must be > 0, got {self.strategy_timeout_seconds}"
            )
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.probe_timeout_seconds <= 0:
            raise ValueError(
                f"probe_timeout_seconds must be > 0, got {self.probe_timeout_seconds}"
            )
        if self.max_upload_bytes <= 0:
            raise ValueError(f"max_upload_bytes must be > 0, got {self.max_upload_bytes}")

    def __repr__(self) -> str:
        """Mask the API key to prevent accidental credential leakage."""
        parts: list[str] = []
        for f in dataclasses.fields(self):
            val = getattr(self, f.name)
            if f.name == "api_key":
                masked = f"...{val[-4:]}" if len(val) >= 4 else "****"
                parts.append(f"api_key='{masked}'")
            else:
                parts.append(f"{f.name}={val!r}")
        return f"CampusNotesConfig({', '.join(parts)})"
