"""
Boundary checks applied before the engine does any work.

Provides:
- ``normalize_domain``  -- trims, lowercases and validates a domain name.
- ``require_identity``  -- rejects calls that carry no caller identity token.
- ``caller_reference``  -- a non-secret stand-in for a token, for queued jobs.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Optional

from posturescope.core.exceptions import InvalidDomain, Unauthenticated

# ── Constants ────────────────────────────────────────────────────────────────

# Labels of letters, digits and inner hyphens separated by dots; the TLD must
# start with a letter.  Total length must not exceed 253 characters.
_DOMAIN_LABEL_PATTERN: str = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_TLD_PATTERN: str = r"[a-z](?:[a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_REGEX: re.Pattern[str] = re.compile(
    rf"^(?:{_DOMAIN_LABEL_PATTERN}\.)+{_TLD_PATTERN}$"
)
_MAX_DOMAIN_LENGTH: int = 253
_CALLER_REFERENCE_PREFIX: str = "caller:"
_CALLER_DIGEST_LENGTH: int = 16


# ── Domain Normalisation ─────────────────────────────────────────────────────

def normalize_domain(domain: Any) -> str:
    """Return *domain* trimmed, lower-cased and without a trailing dot.

    Args:
        domain: The raw domain supplied by the caller, e.g. ``"Example.COM "``.

    Returns:
        The normalised domain, e.g. ``"example.com"``.

    Raises:
        InvalidDomain: If the value is not a string, is empty after trimming,
            is too long, or is not a syntactically valid host name.
    """
    if not isinstance(domain, str):
        raise InvalidDomain(domain, "Domain must be a string.")

    cleaned: str = domain.strip().lower().rstrip(".")
    if not cleaned:
        raise InvalidDomain(domain, "Domain must not be empty.")

    if len(cleaned) > _MAX_DOMAIN_LENGTH:
        raise InvalidDomain(
            domain,
            f"Domain exceeds maximum length of {_MAX_DOMAIN_LENGTH} characters.",
        )

    if not _DOMAIN_REGEX.match(cleaned):
        raise InvalidDomain(
            domain,
            f"Invalid domain format: '{cleaned}'. "
            "A valid domain consists of labels separated by dots "
            "(e.g. 'example.com').",
        )

    return cleaned


# ── Caller Identity ──────────────────────────────────────────────────────────

def require_identity(identity: Optional[str]) -> str:
    """Reject a call that carries no identity token.

    The token is opaque: issuing, rotating and validating credentials is the
    identity service's job.  Only presence is checked here.

    Raises:
        Unauthenticated: If *identity* is ``None`` or blank.
    """
    if identity is None or not str(identity).strip():
        raise Unauthenticated()
    return str(identity).strip()


def caller_reference(identity: Optional[str]) -> str:
    """Return a stable, non-secret reference for the caller behind *identity*.

    Queued jobs carry this instead of the token itself, because task
    arguments are kept in the broker and the result backend.

    Raises:
        Unauthenticated: If *identity* is ``None`` or blank.
    """
    token = require_identity(identity)
    digest = hashlib.sha256(token.encode()).hexdigest()[:_CALLER_DIGEST_LENGTH]
    return f"{_CALLER_REFERENCE_PREFIX}{digest}"
