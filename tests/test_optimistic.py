import asyncio

import pytest

from animeverse.core.errors import AuthenticationRequired, NetworkFailure, RemoteRejection
from animeverse.core.scope import ViewScope
from animeverse.core.session import Session, StaticSessionProvider
from animeverse.services.likes import LikeState, predict_toggle
from animeverse.services.optimistic import OptimisticController


class FakeRemote:
    """Remote call whose outcome the test decides after the fact."""

    def __init__(self):
        self.calls = 0
        self.futures: list[asyncio.Future] = []

    def __call__(self):
        self.calls += 1
        future = asyncio.get_running_loop().create_future()
        self.futures.append(future)
        return future


def reconcile(predicted, response):
    return LikeState(liked=response["liked"], count=response["count"])


def test_failure_restores_exact_snapshot():
    async def scenario():
        states = OptimisticController(name="likes")
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        assert states.get("p1") == LikeState(liked=True, count=5)
        assert states.is_pending("p1")

        remote.futures[0].set_exception(NetworkFailure("offline"))
        settlement = await task

        assert not settlement.ok
        assert isinstance(settlement.error, NetworkFailure)
        assert states.get("p1") == LikeState(liked=False, count=4)
        assert settlement.value == LikeState(liked=False, count=4)
        assert not states.is_pending("p1")
        assert remote.calls == 1

    asyncio.run(scenario())


def test_success_takes_server_state():
    async def scenario():
        states = OptimisticController()
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        # Two other users liked meanwhile
        remote.futures[0].set_result({"liked": True, "count": 7})
        settlement = await task

        assert settlement.ok
        assert states.get("p1") == LikeState(liked=True, count=7)

    asyncio.run(scenario())


def test_second_action_builds_on_first_prediction():
    async def scenario():
        states = OptimisticController()
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        first = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        second = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        assert states.get("p1") == LikeState(liked=False, count=4)

        # First fails: the second (unlike) is replayed on the restored base
        remote.futures[0].set_exception(RemoteRejection("nope", status_code=500))
        await first
        assert states.get("p1") == LikeState(liked=True, count=5)

        remote.futures[1].set_result({"liked": False, "count": 4})
        await second
        assert states.get("p1") == LikeState(liked=False, count=4)
        assert not states.is_pending("p1")

    asyncio.run(scenario())


def test_late_response_for_earlier_action_is_ignored():
    async def scenario():
        states = OptimisticController()
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        first = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        second = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)

        remote.futures[1].set_result({"liked": False, "count": 4})
        await second
        remote.futures[0].set_result({"liked": True, "count": 5})
        settlement = await first

        assert settlement.ok
        assert states.get("p1") == LikeState(liked=False, count=4)

    asyncio.run(scenario())


def test_missing_session_fails_before_apply():
    async def scenario():
        states = OptimisticController(session_provider=StaticSessionProvider())
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        settlement = await states.mutate("p1", predict_toggle, remote, reconcile)

        assert isinstance(settlement.error, AuthenticationRequired)
        assert remote.calls == 0
        assert states.get("p1") == LikeState(liked=False, count=4)

    asyncio.run(scenario())


def test_mutate_many_applies_and_rolls_back_together():
    async def scenario():
        provider = StaticSessionProvider(Session(user_id=1, token="t"))
        states = OptimisticController(session_provider=provider)
        for key in ("a", "b"):
            states.seed(key, False)
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate_many(["a", "b", "a"], lambda s: True, remote, lambda p, r: True))
        await asyncio.sleep(0)
        assert states.get("a") is True and states.get("b") is True

        remote.futures[0].set_exception(NetworkFailure("offline"))
        await task
        assert states.get("a") is False and states.get("b") is False

    asyncio.run(scenario())


def test_seed_keeps_outstanding_prediction():
    async def scenario():
        states = OptimisticController()
        states.seed("n1", False)
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate("n1", lambda s: True, remote, lambda p, r: True))
        await asyncio.sleep(0)
        states.seed("n1", False)  # stale poll result lands mid-flight
        assert states.get("n1") is True

        remote.futures[0].set_result({})
        await task
        assert states.get("n1") is True

    asyncio.run(scenario())


def test_closed_scope_leaves_state_alone():
    async def scenario():
        scope = ViewScope("post")
        states = OptimisticController(scope=scope)
        states.seed("p1", LikeState(liked=False, count=4))
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate("p1", predict_toggle, remote, reconcile))
        await asyncio.sleep(0)
        await scope.close()
        remote.futures[0].set_result({"liked": True, "count": 9})
        settlement = await task

        assert settlement.skipped
        assert states.get("p1") == LikeState(liked=True, count=5)

    asyncio.run(scenario())


def test_unknown_key_without_default_raises():
    states = OptimisticController()
    assert states.get("missing") is None
    with pytest.raises(KeyError):
        asyncio.run(states.mutate("missing", lambda s: s, FakeRemote(), lambda p, r: p))


def test_seed_since_mark_ignores_snapshot_older_than_a_confirm():
    async def scenario():
        states = OptimisticController()
        states.seed("n1", False)
        states.seed("n2", False)
        mark = states.mark()
        remote = FakeRemote()

        task = asyncio.create_task(states.mutate("n1", lambda s: True, remote, lambda p, r: True))
        await asyncio.sleep(0)
        remote.futures[0].set_result({})
        await task

        assert states.touched_since("n1", mark)
        assert not states.touched_since("n2", mark)
        assert states.seed("n1", False, since=mark) is False
        assert states.seed("n2", True, since=mark) is True
        assert states.get("n1") is True
        assert states.get("n2") is True

        # A fetch started after the confirm is authoritative again
        assert states.seed("n1", False, since=states.mark()) is True
        assert states.get("n1") is False

    asyncio.run(scenario())
