"""Request signatures — deterministic identity of a normalized analyze request.

The signature is the SHA-256 hex digest of a canonical string built from the
normalized request fields. Casing, whitespace runs, punctuation and the order
in which constraints are listed do not change it.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from collections.abc import Mapping
from typing import Any

_WHITESPACE_RE = re.compile(r"\s+")
# ASCII word characters only; whitespace is already collapsed to " " here
_DISALLOWED_RE = re.compile(r"[^\w\s/+-]", re.ASCII)
_CONSTRAINT_SPLIT_RE = re.compile(r"[\n,]+")

CONSTRAINT_SEPARATOR = "|"
FIELD_DELIMITER = "\n"

# Canonical field order: (attribute name, camelCase alias)
_TEXT_FIELDS: tuple[tuple[str, str], ...] = (
    ("situation", "situation"),
    ("goal", "goal"),
    ("current_steps", "currentSteps"),
    ("deadline", "deadline"),
    ("stakeholders", "stakeholders"),
    ("resources", "resources"),
)


def _coerce(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "\n".join(_coerce(v) for v in value)
    return str(value)


def _field(request: Any, name: str, alias: str) -> str:
    if isinstance(request, Mapping):
        value = request.get(name)
        if value is None:
            value = request.get(alias)
    else:
        value = getattr(request, name, None)
    return _coerce(value)


def normalize_value(value: Any) -> str:
    """Trim, lowercase, collapse whitespace and drop punctuation."""
    text = _coerce(value)
    if not text:
        return ""
    text = text.strip().lower()
    text = _WHITESPACE_RE.sub(" ", text)
    return _DISALLOWED_RE.sub("", text)


def normalize_constraints(constraints: Any) -> list[str]:
    """Split on newlines/commas, normalize each piece, drop empties, sort."""
    pieces = _CONSTRAINT_SPLIT_RE.split(_coerce(constraints))
    return sorted(p for p in (normalize_value(piece) for piece in pieces) if p)


def build_signature_string(request: Any) -> str:
    """Canonical string hashed into the signature."""
    parts = [_field(request, "profile_id", "profileId")]
    parts.extend(normalize_value(_field(request, name, alias)) for name, alias in _TEXT_FIELDS)
    parts.append(
        CONSTRAINT_SEPARATOR.join(normalize_constraints(_field(request, "constraints", "constraints")))
    )
    return FIELD_DELIMITER.join(parts)


def build_signature(request: Any) -> str:
    """Compute the 64-char lowercase hex identity of a request.

    Accepts an ``AnalyzeRequestInput`` or any mapping with the same keys
    (snake_case or camelCase). Missing fields count as empty strings.
    """
    canonical = build_signature_string(request)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_signature(request: Any, signature: str | None) -> bool:
    """Check a client-supplied signature against the recomputed one."""
    if not signature:
        return False
    computed = build_signature(request)
    return hmac.compare_digest(computed.encode("utf-8"), signature.encode("utf-8"))


def normalize_request(request: Any) -> dict[str, Any]:
    """Normalized snapshot stored alongside a cache entry."""
    snapshot: dict[str, Any] = {
        name: normalize_value(_field(request, name, alias)) for name, alias in _TEXT_FIELDS
    }
    snapshot["constraints"] = normalize_constraints(_field(request, "constraints", "constraints"))
    snapshot["signature"] = build_signature(request)
    return snapshot
