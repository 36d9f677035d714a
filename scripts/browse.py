#!/usr/bin/env python
"""Quick CLI to poke the content service through the client layer.

Usage:
    python scripts/browse.py episodes 123 --page 2
    python scripts/browse.py comments 123 5
    python scripts/browse.py notifications --token <bearer token>
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from animeverse.config import get_settings
from animeverse.core.api_client import ContentServiceClient
from animeverse.core.scope import ViewScope
from animeverse.core.session import Session, StaticSessionProvider
from animeverse.log import setup_logging
from animeverse.services.comments import EpisodeCommentThread
from animeverse.services.notifications import NotificationReconciler
from animeverse.services.pagination import PaginationCursor, episode_pages, page_window

logger = logging.getLogger(__name__)


async def show_episodes(client: ContentServiceClient, anime_id: str, page: int) -> int:
    settings = get_settings()
    cursor = PaginationCursor(
        episode_pages(client, anime_id),
        page_size=settings.episodes_page_size,
        name=f"episodes:{anime_id}",
    )
    settlement = await cursor.load()
    if settlement.ok and page > 1:
        settlement = await cursor.request_page(page)
    if not settlement.ok:
        logger.error(settlement.message)
        return 1

    for episode in cursor.items:
        print(f"S{episode.temporada or 1}E{episode.numero:<4} {episode.nome}")
    window = " ".join("..." if n is None else str(n) for n in page_window(cursor.current_page, cursor.total_pages))
    print(f"\npage {cursor.current_page}/{cursor.total_pages}: {window}")
    return 0


async def show_comments(client: ContentServiceClient, anime_id: str, episode_number: int) -> int:
    thread = EpisodeCommentThread(client, anime_id, episode_number)
    settlement = await thread.load()
    if not settlement.ok:
        logger.error(settlement.message)
        return 1

    for node in thread.forest.walk():
        indent = "  " * node.render_depth
        print(f"{indent}- {node.comment.user_nome}: {node.comment.content}")
    print(f"\n{thread.total_count} comments")
    return 0


async def show_notifications(client: ContentServiceClient) -> int:
    async with ViewScope("cli-notifications") as scope:
        reconciler = NotificationReconciler(client, scope=scope)
        settlement = await reconciler.fetch()
        if not settlement.ok:
            logger.error(settlement.message)
            return 1
        for notification in reconciler.notifications:
            marker = " " if notification.is_read else "*"
            print(f"{marker} {notification.message} {notification.link or ''}")
        print(f"\n{reconciler.unread_count} unread")
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--token", help="Bearer token for authenticated calls")
    sub = parser.add_subparsers(dest="command", required=True)

    episodes = sub.add_parser("episodes")
    episodes.add_argument("anime_id")
    episodes.add_argument("--page", type=int, default=1)

    comments = sub.add_parser("comments")
    comments.add_argument("anime_id")
    comments.add_argument("episode_number", type=int)

    sub.add_parser("notifications")

    args = parser.parse_args()
    setup_logging(get_settings().log_level)

    provider = StaticSessionProvider()
    if args.token:
        provider.set_session(Session(user_id="cli", token=args.token))

    async with ContentServiceClient(session_provider=provider) as client:
        if args.command == "episodes":
            return await show_episodes(client, args.anime_id, args.page)
        if args.command == "comments":
            return await show_comments(client, args.anime_id, args.episode_number)
        return await show_notifications(client)


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
