"""Apply-then-reconcile-or-rollback protocol for social signals.

Each target (one post's like state, one notification's read flag, one
collection entry) keeps its last confirmed state and the ordered list of
actions still waiting on the server. What the UI sees is the confirmed state
with every outstanding prediction applied in order, so a second action on the
same target always builds on the first one's prediction.

Settling rules:

- success: the reconciled response becomes the confirmed state, and the
  action plus every earlier outstanding action on that target are retired
  (a late response for an earlier action no longer changes anything)
- failure: the action is removed and the visible state recomputed; with no
  other action outstanding this is exactly the snapshot taken at apply time
- nothing is retried
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Hashable, Iterable, TypeVar

from animeverse.core.errors import AuthenticationRequired, ClientError
from animeverse.core.scope import ViewScope
from animeverse.core.session import SessionProvider, require_session
from animeverse.core.settlement import Settlement

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
S = TypeVar("S")
R = TypeVar("R")


@dataclass
class _Action(Generic[S]):
    id: int
    predict: Callable[[S], S]
    snapshot: S
    predicted: S


@dataclass
class _Target(Generic[S]):
    confirmed: S
    visible: S
    pending: list[_Action[S]] = field(default_factory=list)
    touched: int = 0  # clock value of the last local apply or confirm

    def replay(self) -> None:
        """Recompute visible state and per-action snapshots from confirmed."""
        state = self.confirmed
        for action in self.pending:
            action.snapshot = state
            state = action.predict(state)
            action.predicted = state
        self.visible = state

    def index_of(self, action_id: int) -> int | None:
        for index, action in enumerate(self.pending):
            if action.id == action_id:
                return index
        return None


class OptimisticController(Generic[K, S]):
    """
    Optimistic state for a family of targets.

    Usage:
        likes = OptimisticController(default=lambda post_id: LikeState(False, 0))
        likes.seed(post.id, LikeState(post.is_liked, post.likes_count))
        settlement = await likes.mutate(
            post.id,
            predict=lambda s: LikeState(not s.liked, s.count + (-1 if s.liked else 1)),
            remote=lambda: client.like_post(post.id),
            reconcile=lambda predicted, resp: LikeState(resp.liked, resp.likes_count),
        )
    """

    def __init__(
        self,
        default: Callable[[K], S] | None = None,
        session_provider: SessionProvider | None = None,
        scope: ViewScope | None = None,
        name: str = "optimistic",
    ):
        self._default = default
        self.session_provider = session_provider
        self.scope = scope
        self.name = name
        self._targets: dict[K, _Target[S]] = {}
        self._ids = itertools.count(1)
        self._clock = 0

    def _alive(self) -> bool:
        return self.scope is None or self.scope.alive

    def _target(self, key: K) -> _Target[S]:
        target = self._targets.get(key)
        if target is None:
            if self._default is None:
                raise KeyError(key)
            initial = self._default(key)
            target = _Target(confirmed=initial, visible=initial)
            self._targets[key] = target
        return target

    # ============ State access ============

    def get(self, key: K, default: S | None = None) -> S | None:
        target = self._targets.get(key)
        if target is not None:
            return target.visible
        if self._default is not None:
            return self._default(key)
        return default

    def keys(self) -> list[K]:
        return list(self._targets)

    def is_pending(self, key: K) -> bool:
        target = self._targets.get(key)
        return bool(target and target.pending)

    def _touch(self, target: _Target[S]) -> None:
        self._clock += 1
        target.touched = self._clock

    def mark(self) -> int:
        """
        Clock value to take before starting a fetch.

        Pass it to seed() as `since` when the fetch returns: targets changed
        locally after the mark keep their state, since the fetched snapshot
        may predate those changes.
        """
        return self._clock

    def touched_since(self, key: K, mark: int) -> bool:
        target = self._targets.get(key)
        return target is not None and target.touched > mark

    def seed(self, key: K, state: S, since: int | None = None) -> bool:
        """
        Record authoritative state (e.g. from a fetch), keeping outstanding predictions.

        Returns False when the state was ignored as older than a local change.
        """
        target = self._targets.get(key)
        if target is None:
            self._targets[key] = _Target(confirmed=state, visible=state)
            return True
        if since is not None and target.touched > since:
            logger.debug(f"[{self.name}] Ignoring fetched state for {key}, changed locally since")
            return False
        target.confirmed = state
        target.replay()
        return True

    def forget(self, key: K) -> None:
        self._targets.pop(key, None)

    def clear(self) -> None:
        self._targets.clear()

    # ============ Mutations ============

    async def mutate(
        self,
        key: K,
        predict: Callable[[S], S],
        remote: Callable[[], Awaitable[R]],
        reconcile: Callable[[S, R], S],
    ) -> Settlement[S]:
        """Optimistically change one target. Settles with its resulting state."""
        settlement = await self.mutate_many([key], predict, remote, reconcile)
        if settlement.skipped:
            return Settlement.noop()
        if settlement.ok:
            return Settlement.success(self.get(key))
        return Settlement.failure(settlement.error, self.get(key))

    async def mutate_many(
        self,
        keys: Iterable[K],
        predict: Callable[[S], S],
        remote: Callable[[], Awaitable[R]],
        reconcile: Callable[[S, R], S],
    ) -> Settlement[R]:
        """Optimistically change several targets with one remote call. Settles with the response."""
        keys = list(dict.fromkeys(keys))

        if self.session_provider is not None:
            try:
                require_session(self.session_provider)
            except AuthenticationRequired as e:
                return Settlement.failure(e)

        # Apply phase: no awaits until every prediction is visible
        action_id = next(self._ids)
        for key in keys:
            target = self._target(key)
            snapshot = target.visible
            predicted = predict(snapshot)
            target.pending.append(_Action(action_id, predict, snapshot, predicted))
            target.visible = predicted
            self._touch(target)

        try:
            response = await remote()
        except ClientError as e:
            if self._alive():
                self._rollback(keys, action_id)
            logger.warning(f"[{self.name}] Rolled back {keys}: {e.kind}: {e.message}")
            return Settlement.failure(e)
        except BaseException:
            if self._alive():
                self._rollback(keys, action_id)
            raise

        if not self._alive():
            logger.debug(f"[{self.name}] View closed, dropping response for {keys}")
            return Settlement.noop(response)

        for key in keys:
            self._confirm(key, action_id, response, reconcile)
        return Settlement.success(response)

    def _rollback(self, keys: list[K], action_id: int) -> None:
        for key in keys:
            target = self._targets.get(key)
            if target is None:
                continue
            index = target.index_of(action_id)
            if index is None:
                continue
            del target.pending[index]
            target.replay()

    def _confirm(self, key: K, action_id: int, response: R, reconcile: Callable[[S, R], S]) -> None:
        target = self._targets.get(key)
        if target is None:
            return
        index = target.index_of(action_id)
        if index is None:
            # A later action on this target already settled with newer server state
            logger.debug(f"[{self.name}] Ignoring stale response for {key}")
            return
        target.confirmed = reconcile(target.pending[index].predicted, response)
        del target.pending[: index + 1]
        target.replay()
        self._touch(target)
