"""Community feed with optimistic like toggling."""

import logging
from dataclasses import dataclass
from typing import Iterable

from animeverse.core.api_client import ContentServiceClient
from animeverse.core.errors import ClientError
from animeverse.core.scope import ViewScope
from animeverse.core.session import SessionProvider
from animeverse.core.settlement import Settlement
from animeverse.schemas import CommunityPost, LikeResponse
from animeverse.services.optimistic import OptimisticController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LikeState:
    """Viewer's like flag and the post's like count."""
    liked: bool
    count: int


def predict_toggle(state: LikeState) -> LikeState:
    if state.liked:
        return LikeState(liked=False, count=max(0, state.count - 1))
    return LikeState(liked=True, count=state.count + 1)


def reconcile_like(predicted: LikeState, response: LikeResponse) -> LikeState:
    # Other users may have liked meanwhile; the server count wins
    return LikeState(liked=response.liked, count=response.likes_count)


class LikeController:
    """Like state of the community posts shown in one view."""

    def __init__(
        self,
        client: ContentServiceClient,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
    ):
        self.client = client
        self.scope = scope
        self._posts: dict[int | str, CommunityPost] = {}
        self._order: list[int | str] = []
        self._states: OptimisticController[int | str, LikeState] = OptimisticController(
            default=lambda post_id: LikeState(liked=False, count=0),
            session_provider=session_provider or client.session_provider,
            scope=scope,
            name="likes",
        )
        self.error: ClientError | None = None

    def mark(self) -> int:
        """Take before fetching posts elsewhere; pass to track() as `since`."""
        return self._states.mark()

    def track(self, posts: Iterable[CommunityPost], since: int | None = None) -> None:
        """
        Start tracking posts fetched elsewhere (feed, post detail).

        With `since`, posts liked or unliked here after that mark keep their
        local state instead of the fetched one.
        """
        for post in posts:
            if post.id not in self._posts:
                self._order.append(post.id)
            self._posts[post.id] = post
            self._states.seed(post.id, LikeState(liked=post.is_liked, count=post.likes_count), since=since)

    async def load_feed(self) -> Settlement[list[CommunityPost]]:
        """Fetch the community feed. Failure keeps the posts already shown."""
        mark = self.mark()
        try:
            posts = await self.client.get_community_posts()
        except ClientError as e:
            if self.scope is not None and not self.scope.alive:
                return Settlement.noop()
            logger.warning(f"Failed to load community posts: {e.message}")
            self.error = e
            return Settlement.failure(e, self.posts)

        if self.scope is not None and not self.scope.alive:
            return Settlement.noop()
        self._order = []
        self.track(posts, since=mark)
        self.error = None
        return Settlement.success(self.posts)

    @property
    def posts(self) -> list[CommunityPost]:
        """Tracked posts with the current (possibly predicted) like state."""
        result = []
        for post_id in self._order:
            state = self.state(post_id)
            result.append(
                self._posts[post_id].model_copy(update={"is_liked": state.liked, "likes_count": state.count})
            )
        return result

    def state(self, post_id: int | str) -> LikeState:
        return self._states.get(post_id)

    def is_pending(self, post_id: int | str) -> bool:
        return self._states.is_pending(post_id)

    async def toggle(self, post_id: int | str) -> Settlement[LikeState]:
        """Like or unlike a post, showing the result before the server answers."""
        return await self._states.mutate(
            post_id,
            predict=predict_toggle,
            remote=lambda: self.client.like_post(post_id),
            reconcile=reconcile_like,
        )
