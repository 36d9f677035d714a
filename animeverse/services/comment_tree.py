"""Rebuild threaded discussions from flat comment records.

Works for any record with `id`, `parent_id` and `created_at` attributes
(episode comments and community post comments both qualify). Threads are
small, so every change to the flat list triggers a full rebuild.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Hashable, Iterable, Iterator, TypeVar

logger = logging.getLogger(__name__)

C = TypeVar("C")

DEFAULT_MAX_LEVELS = 3


@dataclass
class CommentNode(Generic[C]):
    """One comment with its direct replies."""

    comment: C
    depth: int  # Structural depth, roots are 0
    render_depth: int  # Indentation level, capped
    replies: list["CommentNode[C]"] = field(default_factory=list)

    @property
    def id(self) -> Hashable:
        return self.comment.id


@dataclass
class CommentForest(Generic[C]):
    """Built thread: visible roots plus bookkeeping for the whole thread."""

    roots: list[CommentNode[C]]
    total_count: int  # Every record in the thread, including dropped ones
    dropped_ids: list[Hashable] = field(default_factory=list)

    def walk(self) -> Iterator[CommentNode[C]]:
        """Pre-order traversal: every parent before its replies."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.replies))

    def flatten(self) -> list[C]:
        return [node.comment for node in self.walk()]

    def find(self, comment_id: Hashable) -> CommentNode[C] | None:
        for node in self.walk():
            if node.id == comment_id:
                return node
        return None

    @property
    def visible_count(self) -> int:
        return self.total_count - len(self.dropped_ids)


def _sort_key(created_at: Any) -> float:
    # Records without a usable timestamp go last at their level
    if isinstance(created_at, datetime):
        return created_at.timestamp()
    if isinstance(created_at, str):
        try:
            return datetime.fromisoformat(created_at).timestamp()
        except ValueError:
            pass
    return float("inf")


def build_comment_tree(comments: Iterable[C], max_levels: int = DEFAULT_MAX_LEVELS) -> CommentForest[C]:
    """
    Build a forest of reply trees from a flat list of one thread's comments.

    - Roots are comments without a parent.
    - A reply whose parent is not in the list (deleted ancestor) is dropped
      together with its own replies, but still counts toward total_count.
      Parent cycles are unreachable from any root and are dropped the same way.
    - Siblings are ordered by created_at ascending, input order breaking ties.
    - render_depth stops growing at max_levels - 1; nesting is kept as is.
    """
    if max_levels < 1:
        raise ValueError("max_levels must be at least 1")

    records: list[C] = []
    seen: set[Hashable] = set()
    for comment in comments:
        if comment.id in seen:
            logger.warning(f"Duplicate comment id {comment.id} in thread, keeping the first")
            continue
        seen.add(comment.id)
        records.append(comment)

    order = {comment.id: index for index, comment in enumerate(records)}

    def sort_key(comment: C) -> tuple[float, int]:
        return (_sort_key(getattr(comment, "created_at", None)), order[comment.id])

    children: dict[Hashable, list[C]] = {}
    roots: list[C] = []
    for comment in records:
        parent_id = comment.parent_id
        if parent_id is None:
            roots.append(comment)
        else:
            children.setdefault(parent_id, []).append(comment)

    max_render = max_levels - 1
    root_nodes: list[CommentNode[C]] = []
    placed: set[Hashable] = set()

    # Iterative DFS so deep reply chains cannot hit the recursion limit
    stack: list[tuple[C, int, list[CommentNode[C]]]] = [
        (comment, 0, root_nodes) for comment in sorted(roots, key=sort_key, reverse=True)
    ]
    while stack:
        comment, depth, siblings = stack.pop()
        node = CommentNode(comment=comment, depth=depth, render_depth=min(depth, max_render))
        siblings.append(node)
        placed.add(comment.id)
        for reply in sorted(children.get(comment.id, []), key=sort_key, reverse=True):
            stack.append((reply, depth + 1, node.replies))

    dropped = [comment.id for comment in records if comment.id not in placed]
    if dropped:
        logger.debug(f"Dropped {len(dropped)} orphaned comment(s) from thread: {dropped}")

    return CommentForest(roots=root_nodes, total_count=len(records), dropped_ids=dropped)
