"""Author display-name resolution.

``resolve`` is total: a missing id, a missing profile, an empty username or
a failed lookup all map to the unknown-author sentinel instead of None.
"""
import logging
from typing import Dict, Iterable, Optional

from .collaborators import ChatBackend

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Anonymous"


class AuthorResolver:
    """Resolves profile ids to display names, caching known profiles.

    Attributes:
        unknown: Sentinel returned when a name cannot be resolved.
    """

    def __init__(self, backend: ChatBackend, unknown: str = UNKNOWN_AUTHOR) -> None:
        self.backend = backend
        self.unknown = unknown
        self._names: Dict[str, str] = {}

    def _remember(self, profile_id: str, username: Optional[str]) -> str:
        name = username or self.unknown
        self._names[profile_id] = name
        return name

    async def resolve(self, author_id: Optional[str]) -> str:
        """Single-record lookup for one author id."""
        if not author_id:
            return self.unknown
        if author_id in self._names:
            return self._names[author_id]
        try:
            profile = await self.backend.fetch_profile(author_id)
        except Exception as e:
            logger.warning(f"Author lookup failed for {author_id}: {e}")
            return self.unknown
        if profile is None:
            return self.unknown
        return self._remember(profile.id, profile.username)

    async def resolve_many(self, author_ids: Iterable[Optional[str]]) -> Dict[str, str]:
        """Resolve a set of author ids with one batch lookup.

        Only ids not already cached are fetched. Every requested (non-empty)
        id appears in the result.
        """
        wanted = {a for a in author_ids if a}
        missing = sorted(a for a in wanted if a not in self._names)
        if missing:
            try:
                for profile in await self.backend.fetch_profiles(missing):
                    self._remember(profile.id, profile.username)
            except Exception as e:
                logger.warning(f"Batch author lookup failed for {len(missing)} id(s): {e}")
        return {a: self._names.get(a, self.unknown) for a in wanted}
