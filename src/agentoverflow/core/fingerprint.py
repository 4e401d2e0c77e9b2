# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Deterministic fingerprints for error reports.

Two reports of the same failure rarely match byte for byte: paths, ports,
addresses and request ids differ between machines. The fingerprint strips
those volatile parts before hashing so the same error lands on the same
Issue.

    type     "ConnectionRefusedError"            -> "connectionrefused"
    message  "connect ECONNREFUSED 10.0.0.9:5432" -> "connect econnrefused <ip>:<port>"
    runtime  "node@18.17.0"                       -> "node@18"

The three normalized fields are joined with ``|`` and hashed with SHA-256.
Callers must treat the result as an opaque key.
"""

from __future__ import annotations

import hashlib
import re

FINGERPRINT_LENGTH = 64

# Applied in order; later patterns see the output of earlier ones.
# re.ASCII keeps \w and \d independent of the input's script.
_MESSAGE_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"/[\w\-/.]+", re.ASCII), "<path>"),
    (re.compile(r":\d{2,5}", re.ASCII), ":<port>"),
    (
        re.compile(
            r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
            re.IGNORECASE,
        ),
        "<uuid>",
    ),
    (re.compile(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}", re.ASCII), "<ip>"),
    (re.compile(r"\b\d{6,}\b", re.ASCII), "<id>"),
]

_WHITESPACE = re.compile(r"\s+")


def normalize_error_type(error_type: str | None) -> str:
    """Drop a trailing ``Error`` or ``Exception`` suffix and lowercase."""
    if not error_type:
        return ""
    if error_type.endswith("Error"):
        error_type = error_type[: -len("Error")]
    if error_type.endswith("Exception"):
        error_type = error_type[: -len("Exception")]
    return error_type.lower().strip()


def normalize_error_message(message: str | None) -> str:
    """Replace volatile tokens with placeholders and collapse whitespace."""
    if not message:
        return ""
    for pattern, placeholder in _MESSAGE_RULES:
        message = pattern.sub(placeholder, message)
    return _WHITESPACE.sub(" ", message).lower().strip()


def normalize_runtime(runtime: str | None) -> str:
    """Reduce ``name@major.minor.patch`` to ``name@major``."""
    if not runtime:
        return ""
    name, _, version = runtime.partition("@")
    major = version.split("@")[0].split(".")[0]
    return f"{name}@{major}"


def normalized_signature(
    error_type: str | None,
    error_message: str | None,
    runtime: str | None = None,
) -> str:
    """The pre-hash string a fingerprint is computed from."""
    return "|".join(
        [
            normalize_error_type(error_type),
            normalize_error_message(error_message),
            normalize_runtime(runtime),
        ]
    )


def generate_fingerprint(
    error_type: str | None,
    error_message: str | None,
    runtime: str | None = None,
) -> str:
    """Compute the stable identity of an error report.

    Args:
        error_type: Exception class or error code (e.g. "TypeError", "ECONNREFUSED")
        error_message: Raw error message
        runtime: Runtime identifier such as "node@18.17.0" or "python@3.12.1"

    Returns:
        64-character lowercase hex string. All-absent inputs hash ``"||"``.
    """
    signature = normalized_signature(error_type, error_message, runtime)
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def is_fingerprint(value: str) -> bool:
    """Check whether a string has the shape of a fingerprint."""
    return len(value) == FINGERPRINT_LENGTH and all(c in "0123456789abcdef" for c in value)
