"""PageKit kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, pretty_dumps
from .manifest_hash import manifest_hash, manifest_key

__all__ = [
    "CanonicalJsonTypeError",
    "canonical_dumps",
    "manifest_hash",
    "manifest_key",
    "pretty_dumps",
]
