"""Session collaborator: who is browsing and with which credential.

Sessions are issued elsewhere; this layer only reads them. Components receive
a SessionProvider in their constructor instead of reaching for a global.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from animeverse.core.errors import AuthenticationRequired

logger = logging.getLogger(__name__)

SessionListener = Callable[["Session | None"], None]


@dataclass(frozen=True)
class Session:
    """Current identity and bearer credential."""

    user_id: int | str
    token: str
    name: str | None = None


class SessionProvider(Protocol):
    """Read-only source of the current session."""

    def current(self) -> Session | None: ...

    def subscribe(self, listener: SessionListener) -> Callable[[], None]: ...


class StaticSessionProvider:
    """
    In-memory session holder.

    Host applications call set_session()/clear() when the user signs in or
    out; subscribers are told about every change.
    """

    def __init__(self, session: Session | None = None):
        self._session = session
        self._listeners: list[SessionListener] = []

    def current(self) -> Session | None:
        return self._session

    def set_session(self, session: Session | None) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"Session listener failed: {type(e).__name__}: {e}")

    def clear(self) -> None:
        self.set_session(None)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def require_session(provider: SessionProvider | None) -> Session:
    """Return the current session or raise AuthenticationRequired."""
    session = provider.current() if provider is not None else None
    if session is None or not session.token:
        raise AuthenticationRequired()
    return session
