"""
Character store.

Rows in the `characters` table come in two shapes: flat columns, or a JSONB
`profile` column holding base_prompt / personality / visual_details. Both map
to Character. A store failure never fails a run; placeholders are used.
"""

import logging
from typing import Optional

from ..supabase_client import LazySupabase
from .models import Character

logger = logging.getLogger(__name__)

CHARACTERS_TABLE = "characters"
DEFAULT_BASE_PROMPT = "cinematic, realistic character"
DEFAULT_PERSONALITY = "realistic movie character"


def placeholder_character(character_id: str) -> Character:
    return Character(
        id=character_id,
        name=f"Character {character_id[:4]}",
        base_prompt=DEFAULT_BASE_PROMPT,
        personality=DEFAULT_PERSONALITY,
    )


def row_to_character(row: dict) -> Character:
    """Map a table row, flat or with a JSON profile, to a Character."""
    profile = row.get("profile")
    source = profile if isinstance(profile, dict) and profile else row
    return Character(
        id=str(row["id"]),
        name=row.get("name") or f"Character {str(row['id'])[:4]}",
        base_prompt=source.get("base_prompt") or DEFAULT_BASE_PROMPT,
        personality=source.get("personality") or DEFAULT_PERSONALITY,
        reference_image=row.get("reference_image"),
        visual_details=source.get("visual_details") or None,
    )


class SupabaseCharacterStore:
    def __init__(self, client=None):
        self.client = client if client is not None else LazySupabase()

    async def get_characters(self, character_ids: list[str]) -> list[Character]:
        """
        Fetch characters by id, in request order.

        Unknown ids and store errors yield placeholders instead of raising.
        """
        rows: list[dict] = []
        try:
            result = self.client.table(CHARACTERS_TABLE).select("*").in_("id", character_ids).execute()
            rows = result.data or []
        except Exception as e:
            logger.warning(f"Character lookup failed, using placeholders: {e}")

        if not rows:
            return [placeholder_character(cid) for cid in character_ids]

        by_id: dict[str, Character] = {}
        for row in rows:
            try:
                character = row_to_character(row)
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed character row: {e}")
                continue
            by_id[character.id] = character

        return [by_id.get(cid) or placeholder_character(cid) for cid in character_ids]


class InMemoryCharacterStore:
    """Fixed roster, for local runs without a database."""

    def __init__(self, characters: Optional[list[Character]] = None):
        self._characters = {c.id: c for c in characters or []}

    async def get_characters(self, character_ids: list[str]) -> list[Character]:
        return [self._characters.get(cid) or placeholder_character(cid) for cid in character_ids]
