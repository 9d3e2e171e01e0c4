"""URL slugs for stories.

A slug is derived from the title and made unique against the target table by
probing ``base``, ``base-1``, ``base-2``... until a free candidate is found.
"""

import logging
import re
import unicodedata
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from windynovel.config import SLUG_FALLBACK_BASE, SLUG_MAX_ATTEMPTS
from windynovel.exceptions import SlugAllocationError
from windynovel.models.story_model import Story

logger = logging.getLogger(__name__)

_DISALLOWED_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_HYPHENS_RE = re.compile(r"-{2,}")


def slugify_title(title: str, fallback: str = SLUG_FALLBACK_BASE) -> str:
    """
    Normalize a free-text title into a slug base:
      - lowercase, strip diacritics (NFD, drop combining marks)
      - drop anything outside [a-z0-9], whitespace and '-'
      - whitespace runs -> '-', collapse '--', trim '-' at both ends
    Titles with no Latin letters or digits left (e.g. fully CJK) fall back to ``fallback``.
    """
    s = (title or "").lower()
    s = unicodedata.normalize("NFD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _DISALLOWED_RE.sub("", s)
    s = _WHITESPACE_RE.sub("-", s)
    s = _HYPHENS_RE.sub("-", s)
    s = s.strip("-")
    return s or fallback


async def slug_taken(db: AsyncSession, slug: str, exclude_id: Optional[int] = None, model=Story) -> bool:
    stmt = select(model.id).where(model.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    return (await db.execute(stmt.limit(1))).first() is not None


async def allocate_slug(
    db: AsyncSession,
    title: str,
    exclude_id: Optional[int] = None,
    model=Story,
    max_attempts: int = SLUG_MAX_ATTEMPTS,
) -> str:
    """
    Return the first collision-free slug for ``title`` in ``model``'s table.

    ``exclude_id`` is the record being updated, so a story keeps its own slug
    when its title is re-saved unchanged.
    """
    base = slugify_title(title)
    for counter in range(max_attempts):
        candidate = base if counter == 0 else f"{base}-{counter}"
        if not await slug_taken(db, candidate, exclude_id=exclude_id, model=model):
            if counter:
                logger.debug("Slug %r taken, allocated %r after %d probes", base, candidate, counter + 1)
            return candidate
    raise SlugAllocationError(base, max_attempts)
