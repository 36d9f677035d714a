"""
Async client for the AnimeVerse remote content service.

Every method either returns validated schema objects or raises one of the
ClientError kinds from animeverse.core.errors:

- AuthenticationRequired: authenticated call without a session, raised
  before any request is built
- NetworkFailure: transport errors, timeouts and other failed requests
- RemoteRejection: non-2xx answers, carrying the server's message verbatim
- DataShapeMismatch: the body did not have the expected shape

GET requests are retried on transient failures; mutations are sent once.
"""

import logging
from typing import Any

import httpx

from animeverse.config import Settings, get_settings
from animeverse.core.errors import NetworkFailure, RemoteRejection
from animeverse.core.retry import NO_RETRY, RetryConfig, with_retry
from animeverse.core.session import SessionProvider, require_session
from animeverse.schemas import (
    ActionResponse,
    AnimePage,
    AnimeSummary,
    CollectionItem,
    CollectionStatus,
    CollectionUpsert,
    Comment,
    CommunityComment,
    CommunityPost,
    EpisodePage,
    LikeResponse,
    MarkAllReadResponse,
    UserNotification,
    parse_list,
    parse_model,
)

logger = logging.getLogger(__name__)


def _rejection_message(response: httpx.Response) -> str:
    """Server-provided error text, or a generic status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"API Error: {response.status_code}"


class ContentServiceClient:
    """Async client for the AnimeVerse REST API."""

    def __init__(
        self,
        session_provider: SessionProvider | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
    ):
        settings = settings or get_settings()
        self.base_url = settings.api_base_url.rstrip("/")
        self.timeout = settings.http_request_timeout
        self.session_provider = session_provider
        self.retry_config = retry_config or RetryConfig.from_settings(settings)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "ContentServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict | None = None,
        json_data: dict | None = None,
        auth: bool = False,
    ) -> Any:
        """
        Send one request and return the decoded body.

        Empty bodies (204) decode to {}; non-JSON bodies are returned as text
        so the caller's shape check can reject them.
        """
        headers = {}
        if auth:
            session = require_session(self.session_provider)
            headers["Authorization"] = f"Bearer {session.token}"
        elif self.session_provider is not None:
            # Public reads still send the token so the server can fill viewer flags
            session = self.session_provider.current()
            if session is not None and session.token:
                headers["Authorization"] = f"Bearer {session.token}"

        retry_config = self.retry_config if method == "GET" else NO_RETRY

        async def send() -> httpx.Response:
            client = await self._get_client()
            try:
                response = await client.request(
                    method, endpoint, params=params, json=json_data, headers=headers
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                message = _rejection_message(e.response)
                logger.warning(f"API error for {method} {endpoint}: {e.response.status_code} - {message}")
                raise RemoteRejection(message, status_code=e.response.status_code) from e
            except (httpx.RequestError, OSError) as e:
                # Transport errors, timeouts, redirect loops, undecodable bodies
                logger.warning(f"API request failed: {method} {endpoint} - {type(e).__name__}: {e}")
                raise NetworkFailure(f"Network error: failed to reach {self.base_url}{endpoint}") from e
            return response

        logger.debug(f"API request: {method} {endpoint}")
        response = await with_retry(send, retry_config, f"{method} {endpoint}")

        if response.status_code == 204 or not response.content:
            return {}
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _require_success(self, result: ActionResponse | LikeResponse | MarkAllReadResponse, what: str):
        if not result.success:
            message = getattr(result, "message", None) or f"Could not {what}."
            raise RemoteRejection(message)
        return result

    # ============ Catalog ============

    async def get_paginated_episodes(self, anime_id: int | str, page: int = 1, page_size: int = 20) -> EpisodePage:
        data = await self._request(
            "GET",
            f"/episodiosPagina/{anime_id}",
            params={"pagina": page, "itensPorPagina": page_size},
        )
        return parse_model(EpisodePage, data, "episodes")

    async def get_paginated_animes(self, page: int = 1) -> AnimePage:
        data = await self._request("GET", f"/animesPagina/{page}")
        return parse_model(AnimePage, data, "catalog")

    async def search_animes(self, term: str, limit: int = 20) -> list[AnimeSummary]:
        data = await self._request("GET", "/pesquisa/termo", params={"term": term, "limit": limit})
        return parse_list(AnimeSummary, data, "search results")

    # ============ Episode comments ============

    async def get_comments(self, anime_id: int | str, episode_number: int) -> list[Comment]:
        data = await self._request("GET", f"/comments/anime/{anime_id}/episode/{episode_number}")
        return parse_list(Comment, data, "episode comments")

    async def post_comment(
        self,
        anime_id: int | str,
        episode_number: int,
        content: str,
        parent_id: int | None = None,
    ) -> Comment:
        data = await self._request(
            "POST",
            "/comments",
            json_data={
                "anime_id": anime_id,
                "episode_number": episode_number,
                "content": content,
                "parent_comment_id": parent_id,
            },
            auth=True,
        )
        return parse_model(Comment, data, "comment")

    async def update_comment(self, comment_id: int, content: str) -> Comment:
        data = await self._request("PUT", f"/comments/{comment_id}", json_data={"content": content}, auth=True)
        return parse_model(Comment, data, "comment")

    async def delete_comment(self, comment_id: int) -> None:
        await self._request("DELETE", f"/comments/{comment_id}", auth=True)

    # ============ Community ============

    async def get_community_posts(self) -> list[CommunityPost]:
        data = await self._request("GET", "/api/community/posts")
        return parse_list(CommunityPost, data, "community posts")

    async def like_post(self, post_id: int | str) -> LikeResponse:
        data = await self._request("POST", f"/api/community/posts/{post_id}/like", auth=True)
        return self._require_success(parse_model(LikeResponse, data, "like"), "like the post")

    async def get_post_comments(self, post_id: int | str) -> list[CommunityComment]:
        data = await self._request("GET", f"/api/community/posts/{post_id}/comments")
        return parse_list(CommunityComment, data, "post comments")

    async def add_post_comment(self, post_id: int | str, content: str) -> CommunityComment:
        data = await self._request(
            "POST",
            f"/api/community/posts/{post_id}/comments",
            json_data={"contentText": content},
            auth=True,
        )
        return parse_model(CommunityComment, data, "post comment")

    # ============ Collection ============

    async def get_collection(self) -> list[CollectionItem]:
        data = await self._request("GET", "/api/my-collection", auth=True)
        return parse_list(CollectionItem, data, "collection")

    async def upsert_collection_item(
        self,
        anime_id: int,
        status: CollectionStatus,
        notes: str | None = None,
        last_watched_episode: str | None = None,
    ) -> dict:
        """Create or update the viewer's entry for anime_id. Safe to replay."""
        payload = CollectionUpsert(
            anime_id=anime_id,
            status=status,
            notes=notes,
            last_watched_episode=last_watched_episode,
        )
        data = await self._request(
            "POST", "/api/my-collection", json_data=payload.model_dump(mode="json"), auth=True
        )
        if not isinstance(data, dict):
            return {}
        return data

    async def remove_collection_item(self, anime_id: int) -> ActionResponse:
        data = await self._request("DELETE", f"/api/my-collection/{anime_id}", auth=True)
        return self._require_success(parse_model(ActionResponse, data, "collection removal"), "remove the item")

    # ============ Notifications ============

    async def get_notifications(self) -> list[UserNotification]:
        data = await self._request("GET", "/api/notifications", auth=True)
        return parse_list(UserNotification, data, "notifications")

    async def mark_notification_read(self, notification_id: int | str) -> ActionResponse:
        data = await self._request("POST", f"/api/notifications/{notification_id}/read", auth=True)
        return self._require_success(parse_model(ActionResponse, data, "notification"), "mark the notification as read")

    async def mark_all_notifications_read(self) -> MarkAllReadResponse:
        data = await self._request("POST", "/api/notifications/read-all", auth=True)
        return self._require_success(parse_model(MarkAllReadResponse, data, "notifications"), "mark notifications as read")
