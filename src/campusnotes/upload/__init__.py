"""Upload pipeline: probe, materialise, classify, name, transfer.

Exports
-------
ConnectivityProbe / HttpReachabilityCheck
    Bounded reachability check with an optimistic failure default.
BlobMaterializer
    Turn bytes- or URI-backed file references into bytes.
classify / resolve_file_type
    Infer ``pdf`` / ``image`` and the canonical MIME type.
PathNamer / sanitize_file_name
    Collision-free ``{owner}/{millis}_{name}`` storage keys.
with_retry / compute_backoff
    Bounded exponential-backoff retry.
NativeSdkStrategy / MultipartFormStrategy / PresignedPutStrategy
    The three upload transports.
UploadStrategyChain
    Ordered fallback over the strategies.
CreateStateMachine
    Track create-with-file lifecycle state and enforce valid transitions.
"""

from .chain import UploadStrategyChain
from .classify import classify, resolve_file_type
from .connectivity import ConnectivityProbe, HttpReachabilityCheck
from .materialize import BlobMaterializer
from .paths import PathNamer, sanitize_file_name
from .retry import compute_backoff, with_retry
from .state import CreateStateMachine
from .strategies import (
    MultipartFormStrategy,
    NativeSdkStrategy,
    PresignedPutStrategy,
    UploadStrategy,
    default_strategies,
)

__all__ = [
    "BlobMaterializer",
    "ConnectivityProbe",
    "CreateStateMachine",
    "HttpReachabilityCheck",
    "MultipartFormStrategy",
    "NativeSdkStrategy",
    "PathNamer",
    "PresignedPutStrategy",
    "UploadStrategy",
    "UploadStrategyChain",
    "classify",
    "compute_backoff",
    "default_strategies",
    "resolve_file_type",
    "sanitize_file_name",
    "with_retry",
]
