"""Token / payload redaction for safe logging.

Before any backend request or response is written to logs the
:func:`redact` function must be applied:

* Values under sensitive keys (``authorization``, ``apikey``,
  ``access_token``, ``refresh_token``...) are masked, keeping only the last
  four characters of a known secret.
* Raw file bytes are replaced with ``<binary:N_bytes>``; uploads never
  reach the log.
* Every known secret is scrubbed from every string value, including
  query strings of signed upload URLs.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable
from typing import Any

_SENSITIVE_KEY_PATTERNS: frozenset[str] = frozenset({
    "token",
    "secret",
    "password",
    "authorization",
    "apikey",
    "api_key",
    "cookie",
})

# Signed upload URLs carry their credential in the query string.
_URL_TOKEN_RE = re.compile(r"([?&]token=)[^&\s]+")


def _mask(value: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret and secret in value:
            suffix = secret[-4:] if len(secret) >= 4 else "****"
            placeholder = f"<redacted:...{suffix}>"
            if secret in placeholder:
                placeholder = "<redacted>"
            value = value.replace(secret, placeholder)
    value = re.sub(r"(Bearer\s+)\S+", lambda m: f"{m.group(1)}<redacted>", value)
    return _URL_TOKEN_RE.sub(lambda m: f"{m.group(1)}<redacted>", value)


def _redact_value(value: Any, secrets: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return _redact_dict(value, secrets)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, secrets) for item in value]
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<binary:{len(value)}_bytes>"
    if isinstance(value, str):
        return _mask(value, secrets)
    return value


def _redact_dict(d: dict, secrets: tuple[str, ...]) -> dict:
    result: dict = {}
    for key, value in d.items():
        key_lower = key.lower() if isinstance(key, str) else ""
        if any(pat in key_lower for pat in _SENSITIVE_KEY_PATTERNS):
            result[key] = "<redacted>" if not isinstance(value, str) else (
                _mask(value, secrets) if any(s and s in value for s in secrets)
                else "<redacted>"
            )
        else:
            result[key] = _redact_value(value, secrets)
    return result


def redact(payload: dict, *secrets: str | None) -> dict:
    """Return a deep copy of *payload* with sensitive data redacted.

    Parameters
    ----------
    payload:
        The dictionary to sanitise (request headers, bodies, responses).
    secrets:
        Known secret strings (API key, access token).  Any occurrence of
        them anywhere in the payload is replaced.

    Returns
    -------
    dict
        A new dictionary; *payload* is never mutated.

    Examples
    --------
    >>> redact({"Authorization": "Bearer abc123"})
    {'Authorization': '<redacted>'}
    """
    safe = copy.deepcopy(payload)
    return _redact_dict(safe, tuple(s for s in secrets if s))
