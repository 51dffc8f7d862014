"""campusnotes.backend -- HTTP transport and backend API wrappers.

This sub-package provides:

* :mod:`.transport` -- HTTP transport with auth headers and error mapping.
* :mod:`.storage` -- Object-storage wrapper for one bucket.
* :mod:`.records` -- Row and RPC wrapper for the record store.
* :mod:`.auth` -- Session providers (identity and access token).
"""

from __future__ import annotations

from .auth import BackendSession, SessionProvider, StaticSession
from .records import RecordAPI, RecordStore
from .storage import StorageAPI, StorageClient
from .transport import BackendTransport

__all__ = [
    "BackendSession",
    "BackendTransport",
    "RecordAPI",
    "RecordStore",
    "SessionProvider",
    "StaticSession",
    "StorageAPI",
    "StorageClient",
]
