"""Opportunity role codec and unique code generation.

Membership in an opportunity is expressed as role strings derived from the
opportunity's code:

    member  : <code>
    admin   : <code>-admin
    request : <code>-request

The code is fixed at creation, so these strings stay valid for the lifetime
of the opportunity. Deriving roles from an empty code degenerates to the bare
suffixes, which is why a code must be assigned before anything calls these.
"""

import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from opphub.config import settings
from opphub.errors import CodeExhaustedError, StoreError
from opphub.logging_config import get_logger

logger = get_logger(__name__)

ADMIN_SUFFIX = "-admin"
REQUEST_SUFFIX = "-request"

_NON_WORD_RUN = re.compile(r"\W+", re.ASCII)

CodeLookup = Callable[[str], Awaitable[Any]]


class HasCode(Protocol):
    code: str


def _code_of(opportunity: "HasCode | str | None") -> str:
    if opportunity is None:
        return ""
    if isinstance(opportunity, str):
        return opportunity
    return opportunity.code or ""


def admin_role(opportunity: "HasCode | str | None") -> str:
    return _code_of(opportunity) + ADMIN_SUFFIX


def member_role(opportunity: "HasCode | str | None") -> str:
    return _code_of(opportunity)


def request_role(opportunity: "HasCode | str | None") -> str:
    return _code_of(opportunity) + REQUEST_SUFFIX


def normalize_title(title: str, fallback: str | None = None) -> str:
    """Turn a display title into a code base.

    Lower-cases, collapses every run of non-word characters into a single
    hyphen, and trims hyphens from both ends:

        "Clean Water Initiative!!" -> "clean-water-initiative"
        "a  b  c"                  -> "a-b-c"

    A title with no word characters falls back to ``fallback`` (default from
    settings) so the result is never empty.
    """
    base = _NON_WORD_RUN.sub("-", (title or "").lower()).strip("-")
    if not base:
        base = fallback or settings.opportunities.fallback_code
    return base


def candidate_code(base: str, suffix: int | None) -> str:
    """Append a numeric suffix; None and 0 mean no suffix."""
    return f"{base}{suffix or ''}"


async def find_unique_code(
    title: str,
    lookup: CodeLookup,
    suffix: int | None = None,
    max_attempts: int | None = None,
) -> str:
    """Find the first code derived from ``title`` that no opportunity holds.

    Tries the bare normalized title, then the title with suffix 1, 2, ...
    in ascending order. ``lookup(code)`` is awaited once per attempt and
    returns the opportunity holding that code, or None when it is free.

    Raises:
        StoreError: lookup failed. Not retried.
        CodeExhaustedError: no free code within ``max_attempts`` lookups.
    """
    base = normalize_title(title)
    limit = max_attempts if max_attempts is not None else settings.opportunities.max_code_attempts

    for _ in range(limit):
        possible = candidate_code(base, suffix)
        try:
            existing = await lookup(possible)
        except StoreError:
            raise
        except Exception as e:
            logger.warning("Code lookup failed", code=possible, error=str(e))
            raise StoreError(str(e)) from e

        if existing is None:
            logger.debug("Found free opportunity code", code=possible)
            return possible

        suffix = (suffix or 0) + 1

    logger.warning("Opportunity code attempts exhausted", base=base, attempts=limit)
    raise CodeExhaustedError(
        f"Unable to find a unique code for '{base}' after {limit} attempts"
    )
