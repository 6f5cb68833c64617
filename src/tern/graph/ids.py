"""
tern.graph.ids — Logical ID assignment.

A logical ID is the sanitized declared name followed by a fixed-length
fingerprint:

    fn1 (function)  →  Fn1 + sha256("function:fn1")[:16]

The fingerprint makes IDs unique even when two names sanitize to the
same prefix ("my-fn" / "my_fn"), and keeps them stable across builds so
the orchestrator updates resources in place.
"""

from __future__ import annotations

import hashlib
import re

FINGERPRINT_LENGTH = 16
PREFIX_LENGTH = 32

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def fingerprint(*parts: str) -> str:
    """Hex sha256 of the parts, truncated to FINGERPRINT_LENGTH."""
    hasher = hashlib.sha256()
    for part in parts:
        # Length-prefixed so ("ab", "c") and ("a", "bc") differ
        encoded = part.encode()
        hasher.update(str(len(encoded)).encode() + b":")
        hasher.update(encoded)
    return hasher.hexdigest()[:FINGERPRINT_LENGTH]


def sanitize(name: str) -> str:
    """Alphanumeric CamelCase prefix of a declared name.

    >>> sanitize("mock-lambda_1")
    'MockLambda1'
    """
    words = [w for w in _NON_ALNUM.split(name) if w]
    prefix = "".join(w[:1].upper() + w[1:] for w in words)
    if not prefix or prefix[0].isdigit():
        prefix = "R" + prefix
    return prefix[:PREFIX_LENGTH]


def logical_id(name: str, discriminant: str, *content: str) -> str:
    """Deterministic logical ID for a declared resource.

    ``discriminant`` is the resource kind; ``content`` is extra
    fingerprint material for resources without a unique declared name
    (permissions and bindings).
    """
    return sanitize(name) + fingerprint(discriminant, name, *content)
