"""Comment threads for episodes and community posts.

Every successful change refetches the thread and rebuilds the forest from
scratch; the server stays the only source of truth for comment content.
"""

import logging
from typing import Generic, TypeVar

from animeverse.config import get_settings
from animeverse.core.api_client import ContentServiceClient
from animeverse.core.errors import ClientError, DataShapeMismatch
from animeverse.core.scope import ViewScope
from animeverse.core.session import SessionProvider, require_session
from animeverse.core.settlement import Settlement
from animeverse.schemas import Comment, CommunityComment
from animeverse.services.comment_tree import CommentForest, build_comment_tree

logger = logging.getLogger(__name__)

C = TypeVar("C")


class CommentThread(Generic[C]):
    """Shared load/post/rebuild logic. Subclasses wire the endpoints."""

    def __init__(
        self,
        client: ContentServiceClient,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
        max_levels: int | None = None,
    ):
        self.client = client
        self.session_provider = session_provider or client.session_provider
        self.scope = scope
        if max_levels is None:
            max_levels = get_settings().comment_max_levels
        self.max_levels = max_levels
        self._comments: list[C] = []
        self._forest: CommentForest[C] = build_comment_tree([], self.max_levels)
        self.is_loading = False
        self.is_posting = False
        self.error: ClientError | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.thread_label})"

    @property
    def thread_label(self) -> str:
        raise NotImplementedError

    async def _fetch(self) -> list[C]:
        raise NotImplementedError

    async def _create(self, content: str, parent_id) -> C:
        raise NotImplementedError

    def _alive(self) -> bool:
        return self.scope is None or self.scope.alive

    # ============ State ============

    @property
    def forest(self) -> CommentForest[C]:
        return self._forest

    @property
    def comments(self) -> list[C]:
        return list(self._comments)

    @property
    def total_count(self) -> int:
        return self._forest.total_count

    def _rebuild(self, comments: list[C]) -> None:
        self._comments = list(comments)
        self._forest = build_comment_tree(self._comments, self.max_levels)

    # ============ Actions ============

    async def load(self) -> Settlement[CommentForest[C]]:
        """
        Fetch and rebuild the thread.

        A malformed response empties the thread and reports the mismatch;
        network or server failures keep the last good thread.
        """
        self.is_loading = True
        try:
            comments = await self._fetch()
        except DataShapeMismatch as e:
            if not self._alive():
                return Settlement.noop()
            logger.warning(f"{self}: {e.message}")
            self._rebuild([])
            self.error = e
            return Settlement.failure(e, self._forest)
        except ClientError as e:
            if not self._alive():
                return Settlement.noop()
            logger.warning(f"{self}: failed to load comments: {e.message}")
            self.error = e
            return Settlement.failure(e, self._forest)
        finally:
            self.is_loading = False

        if not self._alive():
            return Settlement.noop()
        self._rebuild(comments)
        self.error = None
        return Settlement.success(self._forest)

    async def post(self, content: str, parent_id=None) -> Settlement[CommentForest[C]]:
        """Add a comment (or a reply when parent_id is given)."""
        content = content.strip()
        if not content:
            return Settlement.noop(self._forest)
        try:
            require_session(self.session_provider)
        except ClientError as e:
            return Settlement.failure(e, self._forest)

        self.is_posting = True
        try:
            await self._create(content, parent_id)
        except ClientError as e:
            logger.warning(f"{self}: failed to post comment: {e.message}")
            return Settlement.failure(e, self._forest)
        finally:
            self.is_posting = False

        return await self.load()


class EpisodeCommentThread(CommentThread[Comment]):
    """Comments under one episode. Authors can edit and delete their own."""

    def __init__(
        self,
        client: ContentServiceClient,
        anime_id: int | str,
        episode_number: int,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
        max_levels: int | None = None,
    ):
        super().__init__(client, session_provider, scope, max_levels)
        self.anime_id = anime_id
        self.episode_number = episode_number

    @property
    def thread_label(self) -> str:
        return f"anime={self.anime_id} episode={self.episode_number}"

    async def _fetch(self) -> list[Comment]:
        return await self.client.get_comments(self.anime_id, self.episode_number)

    async def _create(self, content: str, parent_id) -> Comment:
        return await self.client.post_comment(self.anime_id, self.episode_number, content, parent_id)

    def can_modify(self, comment: Comment) -> bool:
        """Whether the viewer authored the comment. The server enforces this too."""
        session = self.session_provider.current() if self.session_provider else None
        return session is not None and str(session.user_id) == str(comment.user_id)

    def _find(self, comment_id: int) -> Comment | None:
        return next((c for c in self._comments if c.id == comment_id), None)

    async def edit(self, comment_id: int, content: str) -> Settlement[CommentForest[Comment]]:
        content = content.strip()
        existing = self._find(comment_id)
        if not content or (existing is not None and existing.content.strip() == content):
            return Settlement.noop(self._forest)
        try:
            require_session(self.session_provider)
            await self.client.update_comment(comment_id, content)
        except ClientError as e:
            logger.warning(f"{self}: failed to edit comment {comment_id}: {e.message}")
            return Settlement.failure(e, self._forest)
        return await self.load()

    async def delete(self, comment_id: int) -> Settlement[CommentForest[Comment]]:
        try:
            require_session(self.session_provider)
            await self.client.delete_comment(comment_id)
        except ClientError as e:
            logger.warning(f"{self}: failed to delete comment {comment_id}: {e.message}")
            return Settlement.failure(e, self._forest)
        return await self.load()


class PostCommentThread(CommentThread[CommunityComment]):
    """Comments under one community post."""

    def __init__(
        self,
        client: ContentServiceClient,
        post_id: int | str,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
        max_levels: int | None = None,
    ):
        super().__init__(client, session_provider, scope, max_levels)
        self.post_id = post_id

    @property
    def thread_label(self) -> str:
        return f"post={self.post_id}"

    async def _fetch(self) -> list[CommunityComment]:
        return await self.client.get_post_comments(self.post_id)

    async def _create(self, content: str, parent_id) -> CommunityComment:
        # The post comment endpoint takes no parent; replies land at top level
        return await self.client.add_post_comment(self.post_id, content)
