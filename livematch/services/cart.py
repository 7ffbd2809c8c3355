from __future__ import annotations

from livematch.core.errors import validate_id
from livematch.core.logger import get_logger
from livematch.data.providers.store import SnapshotStore, cart_key

log = get_logger("services.cart")


def cart_item(match: dict) -> dict:
    tournament = match.get("tournamentName")
    sport = match.get("sport") if isinstance(match.get("sport"), dict) else {}
    category = sport.get("category") if isinstance(sport.get("category"), dict) else {}
    if not tournament and isinstance(category.get("tournament"), dict):
        tournament = category["tournament"].get("name")
    return {
        "eventId": match.get("eventId"),
        "homeTeamName": match.get("homeTeamName"),
        "awayTeamName": match.get("awayTeamName"),
        "matchTime": match.get("estimateStartTime"),
        "tournament": tournament,
    }


class Cart:
    """User-selected match snapshots for one client; items are never edited after add."""

    def __init__(self, client_id: str, store: SnapshotStore | None = None):
        self.client_id = validate_id(client_id, "Client")
        self.store = store or SnapshotStore()
        self.items: list[dict] = []

    @property
    def key(self) -> str:
        return cart_key(self.client_id)

    async def load(self) -> list[dict]:
        stored = await self.store.get_json(self.key)
        self.items = [i for i in stored if isinstance(i, dict)] if isinstance(stored, list) else []
        return self.items

    async def _save(self) -> None:
        await self.store.set_json(self.key, self.items)

    def contains(self, event_id) -> bool:
        return any(item.get("eventId") == event_id for item in self.items)

    async def add(self, match: dict) -> bool:
        event_id = validate_id(match.get("eventId"), "Match")
        if self.contains(event_id):
            return False
        self.items.append(cart_item(match))
        await self._save()
        log.info("cart_item_added client_id=%s event_id=%s", self.client_id, event_id)
        return True

    async def remove(self, event_id) -> bool:
        before = len(self.items)
        self.items = [i for i in self.items if i.get("eventId") != event_id]
        if len(self.items) == before:
            return False
        await self._save()
        return True

    async def clear(self) -> None:
        self.items = []
        await self._save()
