"""The viewer's anime collection with optimistic status changes.

Creating an entry and changing its status are the same upsert call keyed by
anime id, so replaying it after a timeout is harmless. Two sessions editing
the same entry resolve as last write wins on the server.
"""

import logging
from typing import Any

from animeverse.core.api_client import ContentServiceClient
from animeverse.core.errors import ClientError
from animeverse.core.scope import ViewScope
from animeverse.core.session import SessionProvider
from animeverse.core.settlement import Settlement
from animeverse.schemas import CollectionItem, CollectionStatus
from animeverse.services.optimistic import OptimisticController

logger = logging.getLogger(__name__)


def _merge_upsert(predicted: CollectionItem | None, response: Any, anime_id: int) -> CollectionItem | None:
    """Fold the upsert response into the predicted entry."""
    if predicted is None:
        return None
    if not isinstance(response, dict) or not response:
        return predicted

    update: dict[str, Any] = {}
    status = response.get("collectionStatus", response.get("status"))
    if status in {s.value for s in CollectionStatus}:
        update["collection_status"] = CollectionStatus(status)
    for key, field_name in (
        ("collection_id", "collection_id"),
        ("user_id", "user_id"),
        ("notes", "notes"),
        ("lastWatchedEpisode", "last_watched_episode"),
        ("last_watched_episode", "last_watched_episode"),
    ):
        if key in response:
            update[field_name] = response[key]

    try:
        return CollectionItem.model_validate({**predicted.model_dump(), **update, "id": anime_id})
    except ValueError:
        logger.debug(f"Upsert response for anime {anime_id} not usable, keeping predicted entry")
        return predicted


class CollectionController:
    """Collection entries of the signed-in viewer, keyed by anime id."""

    def __init__(
        self,
        client: ContentServiceClient,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
    ):
        self.client = client
        self.scope = scope
        self._order: list[int] = []
        self._entries: OptimisticController[int, CollectionItem | None] = OptimisticController(
            default=lambda anime_id: None,
            session_provider=session_provider or client.session_provider,
            scope=scope,
            name="collection",
        )
        self.error: ClientError | None = None

    def _alive(self) -> bool:
        return self.scope is None or self.scope.alive

    async def load(self) -> Settlement[list[CollectionItem]]:
        """Fetch the collection. Failure keeps the entries already shown."""
        mark = self._entries.mark()
        try:
            items = await self.client.get_collection()
        except ClientError as e:
            if not self._alive():
                return Settlement.noop()
            logger.warning(f"Failed to load collection: {e.message}")
            self.error = e
            return Settlement.failure(e, self.items)

        if not self._alive():
            return Settlement.noop()

        fetched = {item.id for item in items}

        def changed_here(anime_id: int) -> bool:
            return self._entries.is_pending(anime_id) or self._entries.touched_since(anime_id, mark)

        for anime_id in self._entries.keys():
            if anime_id not in fetched and not changed_here(anime_id):
                self._entries.forget(anime_id)
        for item in items:
            # Entries added, changed or removed while the fetch was in flight keep the local result
            self._entries.seed(item.id, item, since=mark)

        kept = [a for a in self._order if a not in fetched and changed_here(a)]
        self._order = [item.id for item in items] + kept
        self.error = None
        return Settlement.success(self.items)

    @property
    def items(self) -> list[CollectionItem]:
        entries = (self._entries.get(anime_id) for anime_id in self._order)
        return [entry for entry in entries if entry is not None]

    def by_status(self, status: CollectionStatus | str | None) -> list[CollectionItem]:
        """Entries with the given status; None means all."""
        if status is None:
            return self.items
        status = CollectionStatus(status)
        return [item for item in self.items if item.collection_status == status]

    def status_of(self, anime_id: int) -> CollectionStatus | None:
        entry = self._entries.get(anime_id)
        return entry.collection_status if entry else None

    def is_pending(self, anime_id: int) -> bool:
        return self._entries.is_pending(anime_id)

    async def set_status(
        self,
        anime_id: int,
        status: CollectionStatus | str,
        notes: str | None = None,
        last_watched_episode: str | None = None,
    ) -> Settlement[CollectionItem | None]:
        """Add the anime to the collection or change its status (upsert)."""
        status = CollectionStatus(status)

        def predict(current: CollectionItem | None) -> CollectionItem:
            if current is None:
                return CollectionItem(
                    id=anime_id,
                    collection_status=status,
                    notes=notes,
                    last_watched_episode=last_watched_episode,
                )
            update: dict[str, Any] = {"collection_status": status}
            if notes is not None:
                update["notes"] = notes
            if last_watched_episode is not None:
                update["last_watched_episode"] = last_watched_episode
            return current.model_copy(update=update)

        if anime_id not in self._order:
            self._order.append(anime_id)

        return await self._entries.mutate(
            anime_id,
            predict=predict,
            remote=lambda: self.client.upsert_collection_item(anime_id, status, notes, last_watched_episode),
            reconcile=lambda predicted, response: _merge_upsert(predicted, response, anime_id),
        )

    async def remove(self, anime_id: int) -> Settlement[CollectionItem | None]:
        """Delete the viewer's entry for the anime."""
        if self._entries.get(anime_id) is None:
            return Settlement.noop()
        return await self._entries.mutate(
            anime_id,
            predict=lambda current: None,
            remote=lambda: self.client.remove_collection_item(anime_id),
            reconcile=lambda predicted, response: None,
        )

    async def add_favorite(self, anime_id: int) -> Settlement[CollectionItem | None]:
        return await self.set_status(anime_id, CollectionStatus.FAVORITE)

    async def toggle_favorite(self, anime_id: int) -> Settlement[CollectionItem | None]:
        """Favorite button: removes a favorite entry, otherwise upserts as favorite."""
        if self.status_of(anime_id) == CollectionStatus.FAVORITE:
            return await self.remove(anime_id)
        return await self.set_status(anime_id, CollectionStatus.FAVORITE)
