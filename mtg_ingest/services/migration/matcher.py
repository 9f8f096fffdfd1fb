"""
Card matching against the canonical catalog.

Tiers, in order of precedence:
1. exact: same name (case-sensitive) in the same set (case-insensitive code)
2. name: name alone, only when exactly one printing carries it
3. fuzzy: within the claimed set, normalized names where one contains the other

Fuzzy returns the first candidate in catalog (uuid) order; which printing
wins there can change as the catalog changes.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.core.constants import StagingStatus
from mtg_ingest.repositories.card_repo import CardRepository
from mtg_ingest.services.readers.csv_reader import StagingRow

logger = structlog.get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class MatchMethod(str, Enum):
    EXACT = "exact"
    NAME = "name"
    FUZZY = "fuzzy"


@dataclass
class MatchResult:
    uuid: Optional[str] = None
    method: Optional[MatchMethod] = None

    @property
    def matched(self) -> bool:
        return self.uuid is not None


def normalize_name(name: str) -> str:
    """Lower-case and strip everything that is not a letter or digit."""
    return _NON_ALNUM.sub("", name.lower())


class CardMatcher:
    """
    Reconciles (name, set code) pairs with catalog uuids.

    Set card lists and name lookups are cached for the matcher's lifetime,
    so create one per job.
    """

    def __init__(self, db: AsyncSession):
        self.cards = CardRepository(db)
        self._set_cache: dict[str, list[tuple[str, str]]] = {}
        self._name_cache: dict[str, Optional[str]] = {}

    async def _set_cards(self, set_code: str) -> list[tuple[str, str]]:
        """(uuid, name) pairs of a set in catalog order."""
        key = set_code.upper()
        if key not in self._set_cache:
            cards = await self.cards.get_set_cards(key)
            self._set_cache[key] = [(card.uuid, card.name) for card in cards]
        return self._set_cache[key]

    async def match_exact(self, name: str, set_code: Optional[str]) -> Optional[str]:
        if not set_code:
            return None
        for uuid, card_name in await self._set_cards(set_code):
            if card_name == name:
                return uuid
        return None

    async def match_unique_name(self, name: str) -> Optional[str]:
        """uuid of the only printing named name; None if absent or ambiguous."""
        if name not in self._name_cache:
            cards = await self.cards.find_by_name(name, limit=2)
            self._name_cache[name] = cards[0].uuid if len(cards) == 1 else None
        return self._name_cache[name]

    async def match_fuzzy(self, name: str, set_code: Optional[str]) -> Optional[str]:
        if not set_code:
            return None
        target = normalize_name(name)
        if not target:
            return None
        for uuid, card_name in await self._set_cards(set_code):
            candidate = normalize_name(card_name)
            if candidate and (target in candidate or candidate in target):
                return uuid
        return None

    async def match(
        self,
        name: str,
        set_code: Optional[str] = None,
        fuzzy: bool = False,
    ) -> MatchResult:
        """
        Match a single card.

        Args:
            name: Card name
            set_code: Claimed set code
            fuzzy: Try the fuzzy tier last

        Returns:
            MatchResult; uuid is None when unmatched
        """
        uuid = await self.match_exact(name, set_code)
        if uuid:
            return MatchResult(uuid, MatchMethod.EXACT)

        uuid = await self.match_unique_name(name)
        if uuid:
            return MatchResult(uuid, MatchMethod.NAME)

        if fuzzy:
            uuid = await self.match_fuzzy(name, set_code)
            if uuid:
                return MatchResult(uuid, MatchMethod.FUZZY)

        return MatchResult()

    async def match_rows(self, rows: Iterable[StagingRow], fuzzy: bool = True) -> dict[str, int]:
        """
        Run every tier over pending staging rows, one tier at a time.

        Matched rows get status matched with matched_uuid and match_method
        set; rows left over are marked unmatched.

        Returns:
            Counts per method plus "unmatched"
        """
        pending = [row for row in rows if row.status == StagingStatus.PENDING]
        counts = {method.value: 0 for method in MatchMethod}
        counts["unmatched"] = 0

        tiers = [
            (MatchMethod.EXACT, lambda row: self.match_exact(row.name, row.set_code)),
            (MatchMethod.NAME, lambda row: self.match_unique_name(row.name)),
        ]
        if fuzzy:
            tiers.append((MatchMethod.FUZZY, lambda row: self.match_fuzzy(row.name, row.set_code)))

        for method, tier in tiers:
            still_pending = []
            for row in pending:
                uuid = await tier(row)
                if uuid:
                    row.status = StagingStatus.MATCHED
                    row.matched_uuid = uuid
                    row.match_method = method.value
                    counts[method.value] += 1
                else:
                    still_pending.append(row)
            pending = still_pending

        for row in pending:
            row.status = StagingStatus.UNMATCHED
            row.error_message = f"No catalog match for '{row.name}' ({row.set_code})"
            counts["unmatched"] += 1

        logger.info("Card matching complete", **counts)
        return counts
