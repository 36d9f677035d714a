"""Notification bell: fetch, poll and optimistic read-state changes."""

import asyncio
import logging

from animeverse.config import get_settings
from animeverse.core.api_client import ContentServiceClient
from animeverse.core.errors import ClientError
from animeverse.core.scope import ViewScope
from animeverse.core.session import Session, SessionProvider
from animeverse.core.settlement import Settlement
from animeverse.schemas import UserNotification
from animeverse.services.optimistic import OptimisticController

logger = logging.getLogger(__name__)


def _mark_read(state: bool) -> bool:
    return True


def _confirm_read(predicted: bool, response) -> bool:
    return True


class NotificationReconciler:
    """
    Notifications of the signed-in viewer.

    Fetch failures never reach the surrounding view: the list falls back to
    whatever was last loaded (empty on first load) and the error is kept on
    `error` for inline display.
    """

    def __init__(
        self,
        client: ContentServiceClient,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
        poll_interval: float | None = None,
    ):
        self.client = client
        self.session_provider = session_provider or client.session_provider
        self.scope = scope or ViewScope("notifications")
        if poll_interval is None:
            poll_interval = get_settings().notification_poll_interval
        self.poll_interval = poll_interval
        self._records: list[UserNotification] = []
        self._read: OptimisticController[int | str, bool] = OptimisticController(
            session_provider=self.session_provider,
            scope=self.scope,
            name="notifications",
        )
        self._unsubscribe = None
        self.error: ClientError | None = None
        self.last_marked_count: int | None = None

    # ============ State ============

    @property
    def notifications(self) -> list[UserNotification]:
        return [
            record.model_copy(update={"is_read": self._read.get(record.id, record.is_read)})
            for record in self._records
        ]

    @property
    def unread_count(self) -> int:
        return sum(1 for record in self._records if not self._read.get(record.id, record.is_read))

    def is_pending(self, notification_id: int | str) -> bool:
        return self._read.is_pending(notification_id)

    # ============ Session wiring ============

    def attach(self) -> None:
        """Fetch whenever a session becomes available; clear on sign-out."""
        if self._unsubscribe is not None or self.session_provider is None or not self.scope.alive:
            return
        self._unsubscribe = self.session_provider.subscribe(self._on_session_change)
        session = self.session_provider.current()
        if session is not None and session.token:
            self.scope.create_task(self.fetch(), name="fetch")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_session_change(self, session: Session | None) -> None:
        if not self.scope.alive:
            return
        if session is not None and session.token:
            self.scope.create_task(self.fetch(), name="fetch")
        else:
            self._records = []
            self._read.clear()
            self.error = None

    # ============ Fetch / polling ============

    async def fetch(self) -> Settlement[list[UserNotification]]:
        """Load notifications. Without a session this is a no-op."""
        session = self.session_provider.current() if self.session_provider else None
        if session is None or not session.token:
            return Settlement.noop(self.notifications)

        mark = self._read.mark()
        try:
            records = await self.client.get_notifications()
        except ClientError as e:
            if not self.scope.alive:
                return Settlement.noop()
            logger.warning(f"Failed to fetch notifications: {e.message}")
            self.error = e
            return Settlement.failure(e, self.notifications)

        if not self.scope.alive:
            return Settlement.noop()

        current_ids = {record.id for record in records}
        for key in self._read.keys():
            if key in current_ids or self._read.is_pending(key) or self._read.touched_since(key, mark):
                continue
            self._read.forget(key)
        for record in records:
            # A mark-read confirmed while this fetch was in flight wins over its snapshot
            self._read.seed(record.id, record.is_read, since=mark)

        self._records = records
        self.error = None
        logger.debug(f"Loaded {len(records)} notifications, {self.unread_count} unread")
        return Settlement.success(self.notifications)

    def start_polling(self, interval: float | None = None) -> None:
        """Refetch every `interval` seconds until stopped or the scope closes."""
        if self.scope.get_task("poll") is not None:
            return
        if interval is None:
            interval = self.poll_interval
        self.scope.create_task(self._poll(interval), name="poll")

    def stop_polling(self) -> bool:
        return self.scope.cancel_task("poll")

    async def _poll(self, interval: float) -> None:
        while self.scope.alive:
            await asyncio.sleep(interval)
            if not self.scope.alive:
                break
            await self.fetch()

    async def close(self) -> None:
        """Tear down with the owning view."""
        self.detach()
        await self.scope.close()

    # ============ Read state ============

    async def mark_one_read(self, notification_id: int | str) -> Settlement[bool]:
        if self._read.get(notification_id, True):
            return Settlement.noop(True)
        return await self._read.mutate(
            notification_id,
            predict=_mark_read,
            remote=lambda: self.client.mark_notification_read(notification_id),
            reconcile=_confirm_read,
        )

    async def mark_all_read(self) -> Settlement[int]:
        """
        Mark every notification read. Settles with the server's markedCount.

        Best effort: if the server marked fewer than were unread here, a
        refetch is scheduled to pick up the real state.
        """
        unread = [record.id for record in self._records if not self._read.get(record.id, record.is_read)]
        if not unread:
            return Settlement.noop(0)

        settlement = await self._read.mutate_many(
            unread,
            predict=_mark_read,
            remote=self.client.mark_all_notifications_read,
            reconcile=_confirm_read,
        )
        if settlement.skipped:
            return Settlement.noop()
        if not settlement.ok:
            return Settlement.failure(settlement.error)

        marked = settlement.value.marked_count
        self.last_marked_count = marked
        if marked < len(unread) and self.scope.alive:
            logger.info(f"Server marked {marked} of {len(unread)} notifications, resyncing")
            self.scope.create_task(self.fetch(), name="resync")
        return Settlement.success(marked)
