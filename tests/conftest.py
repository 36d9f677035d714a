"""Shared fixtures: an in-memory stand-in for the remote content service."""

import asyncio
import json
import re
from datetime import datetime, timedelta

import httpx
import pytest

from animeverse.config import Settings
from animeverse.core.api_client import ContentServiceClient
from animeverse.core.retry import NO_RETRY
from animeverse.core.session import Session, StaticSessionProvider

BASE_URL = "http://animeverse.test"
T0 = datetime(2024, 5, 1, 12, 0, 0)


def ts(minutes: int) -> str:
    return (T0 + timedelta(minutes=minutes)).isoformat()


def json_response(status: int, body) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeContentService:
    """
    Minimal REST backend keyed by the viewer's bearer token.

    Tests can:
    - fail(route, status, body) / fail_network(route): make a route misbehave
    - hold(route): answer with the state at arrival, but only once the event is set
    - inspect calls / max_in_flight
    Routes are written "METHOD /path".
    """

    def __init__(self):
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: dict[str, tuple[int, object] | str] = {}
        self._gates: dict[str, asyncio.Event] = {}

        self.episodes: dict[str, list[dict]] = {}
        self.comments: list[dict] = []
        self.post_comments: dict[str, list[dict]] = {}
        self.posts: list[dict] = []
        self.post_likers: dict[str, set[str]] = {}
        self.collection: dict[int, dict] = {}
        self.notifications: list[dict] = []
        self.animes: list[dict] = []
        self.marked_count_override: int | None = None
        self._next_id = 1000

    # ============ Test controls ============

    def fail(self, route: str, status: int = 500, body=None) -> None:
        self._failures[route] = (status, body if body is not None else {"message": "Server exploded"})

    def fail_network(self, route: str) -> None:
        self._failures[route] = "network"

    def recover(self, route: str) -> None:
        self._failures.pop(route, None)

    def hold(self, route: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[route] = gate
        return gate

    def count(self, route: str) -> int:
        return sum(1 for call in self.calls if call == route)

    async def arrived(self, route: str, count: int = 1) -> None:
        """Wait until `count` requests for route have reached the service."""
        while self.count(route) < count:
            await asyncio.sleep(0)

    # ============ Seed data ============

    def add_episodes(self, anime_id: str, count: int) -> None:
        self.episodes[str(anime_id)] = [
            {"id": n, "temporada": 1, "numero": n, "nome": f"Episode {n}", "link": f"/v/{n}"}
            for n in range(1, count + 1)
        ]

    def add_comment(self, comment_id: int, parent_id: int | None, minute: int, user_id: int = 1, content: str | None = None) -> None:
        self.comments.append({
            "id": comment_id,
            "anime_id": "7",
            "episode_number": 1,
            "user_id": user_id,
            "user_nome": f"user{user_id}",
            "parent_comment_id": parent_id,
            "content": content or f"comment {comment_id}",
            "created_at": ts(minute),
            "updated_at": ts(minute),
        })

    def add_post(self, post_id: int, likes: int = 0, liked_by: set[str] | None = None) -> None:
        likers = set(liked_by or set())
        # Anonymous likes from other users make up the rest of the count
        likers |= {f"other-{n}" for n in range(likes - len(likers))}
        self.post_likers[str(post_id)] = likers
        self.posts.append({
            "id": post_id,
            "user_id": 9,
            "user_name": "poster",
            "content_text": f"post {post_id}",
            "created_at": ts(post_id),
            "likes_count": len(likers),
            "comments_count": 0,
        })

    def add_notification(self, notification_id: int, is_read: bool = False) -> None:
        self.notifications.append({
            "id": notification_id,
            "user_id": 1,
            "message": f"notification {notification_id}",
            "type": "comment_reply",
            "link": f"/post/{notification_id}",
            "is_read": 1 if is_read else 0,
            "created_at": ts(notification_id),
        })

    # ============ Transport ============

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        route = f"{request.method} {request.url.path}"
        self.calls.append(route)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # The answer is decided on arrival; a held route delivers it late
            failure = self._failures.get(route)
            if failure is None:
                response = self.route(request)
            elif failure == "network":
                response = None
            else:
                status, body = failure
                response = json_response(status, body)

            gate = self._gates.get(route)
            if gate is not None:
                await gate.wait()

            if response is None:
                raise httpx.ConnectError("Connection refused", request=request)
            return response
        finally:
            self.in_flight -= 1

    def _viewer(self, request: httpx.Request) -> str | None:
        header = request.headers.get("authorization", "")
        return header[len("Bearer "):] if header.startswith("Bearer ") else None

    def route(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        body = json.loads(request.content) if request.content else {}
        viewer = self._viewer(request)

        if match := re.fullmatch(r"/episodiosPagina/(\w+)", path):
            episodes = self.episodes.get(match.group(1), [])
            page = int(request.url.params["pagina"])
            size = int(request.url.params["itensPorPagina"])
            return json_response(200, {
                "episodios": episodes[(page - 1) * size: page * size],
                "totalEpisodios": len(episodes),
                "pagina": page,
                "itensPorPagina": size,
            })

        if path == "/pesquisa/termo":
            term = request.url.params["term"].lower()
            limit = int(request.url.params["limit"])
            hits = [a for a in self.animes if term in a["titulo"].lower()]
            return json_response(200, hits[:limit])

        if match := re.fullmatch(r"/animesPagina/(\d+)", path):
            page = int(match.group(1))
            return json_response(200, {
                "animes": self.animes[(page - 1) * 2: page * 2],
                "totalPages": (len(self.animes) + 1) // 2,
            })

        if re.fullmatch(r"/comments/anime/\w+/episode/\d+", path):
            return json_response(200, self.comments)

        if path.startswith("/api/community/posts"):
            return self._community(method, path, body, viewer)

        # Everything below needs a session
        if viewer is None:
            return json_response(401, {"message": "Token not provided"})

        if path == "/comments" and method == "POST":
            self._next_id += 1
            self.add_comment(self._next_id, body.get("parent_comment_id"), 500, user_id=1, content=body["content"])
            return json_response(201, self.comments[-1])

        if match := re.fullmatch(r"/comments/(\d+)", path):
            comment_id = int(match.group(1))
            comment = next((c for c in self.comments if c["id"] == comment_id), None)
            if comment is None:
                return json_response(404, {"message": "Comment not found"})
            if str(comment["user_id"]) != viewer:
                return json_response(403, {"message": "You can only modify your own comments"})
            if method == "PUT":
                comment["content"] = body["content"]
                return json_response(200, comment)
            self.comments.remove(comment)
            return httpx.Response(204)

        if path == "/api/my-collection":
            if method == "GET":
                return json_response(200, list(self.collection.values()))
            anime_id = int(body["anime_id"])
            entry = self.collection.get(anime_id, {"id": anime_id, "collection_id": len(self.collection) + 1, "user_id": viewer})
            entry.update({
                "collectionStatus": body["status"],
                "notes": body.get("notes"),
                "lastWatchedEpisode": body.get("last_watched_episode"),
            })
            self.collection[anime_id] = entry
            return json_response(200, entry)

        if match := re.fullmatch(r"/api/my-collection/(\d+)", path):
            self.collection.pop(int(match.group(1)), None)
            return json_response(200, {"success": True})

        if path == "/api/notifications":
            return json_response(200, self.notifications)

        if path == "/api/notifications/read-all":
            unread = [n for n in self.notifications if not n["is_read"]]
            for n in unread:
                n["is_read"] = 1
            marked = self.marked_count_override if self.marked_count_override is not None else len(unread)
            return json_response(200, {"success": True, "markedCount": marked})

        if match := re.fullmatch(r"/api/notifications/(\w+)/read", path):
            for n in self.notifications:
                if str(n["id"]) == match.group(1):
                    n["is_read"] = 1
            return json_response(200, {"success": True})

        return json_response(404, {"message": f"No route for {method} {path}"})

    def _community(self, method: str, path: str, body: dict, viewer: str | None) -> httpx.Response:
        if path == "/api/community/posts":
            posts = []
            for post in self.posts:
                likers = self.post_likers[str(post["id"])]
                posts.append({**post, "likes_count": len(likers), "isLiked": viewer in likers})
            return json_response(200, posts)

        if match := re.fullmatch(r"/api/community/posts/(\w+)/like", path):
            if viewer is None:
                return json_response(401, {"message": "Token not provided"})
            likers = self.post_likers[match.group(1)]
            if viewer in likers:
                likers.discard(viewer)
            else:
                likers.add(viewer)
            return json_response(200, {"success": True, "liked": viewer in likers, "likesCount": len(likers)})

        if match := re.fullmatch(r"/api/community/posts/(\w+)/comments", path):
            thread = self.post_comments.setdefault(match.group(1), [])
            if method == "GET":
                return json_response(200, thread)
            if viewer is None:
                return json_response(401, {"message": "Token not provided"})
            self._next_id += 1
            thread.append({
                "id": self._next_id,
                "post_id": match.group(1),
                "user_id": viewer,
                "user_name": "me",
                "content_text": body["contentText"],
                "created_at": ts(len(thread)),
            })
            return json_response(201, thread[-1])

        return json_response(404, {"message": "Not found"})


@pytest.fixture
def service() -> FakeContentService:
    return FakeContentService()


@pytest.fixture
def session_provider() -> StaticSessionProvider:
    return StaticSessionProvider(Session(user_id=1, token="1", name="user1"))


@pytest.fixture
def settings() -> Settings:
    return Settings(api_base_url=BASE_URL, notification_poll_interval=0.01)


@pytest.fixture
def client(service, session_provider, settings) -> ContentServiceClient:
    return ContentServiceClient(
        session_provider=session_provider,
        settings=settings,
        transport=service.transport(),
        retry_config=NO_RETRY,
    )


@pytest.fixture
def anonymous_client(service, settings) -> ContentServiceClient:
    return ContentServiceClient(
        session_provider=StaticSessionProvider(),
        settings=settings,
        transport=service.transport(),
        retry_config=NO_RETRY,
    )
