"""Ordered action queue and the single-flight loop that drains it.

A ``BrokerSession`` owns the pending queue, the current token and the sticky
login error. ``drive()`` may be called from anywhere, any number of times;
at most one drain loop runs per session, on the session's worker thread, so
there is never more than one login or API call in flight.

Ordering: actions complete in the order they were enqueued. The only
exception is a 401, which puts the failed action back at the *head* of the
queue so it is retried (after a fresh login) before anything queued later.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from .auth import TokenBundle, token_preview
from .exceptions import AuthError, BrokerError
from .transport import Transport

_logger = logging.getLogger(__name__)

METHODS = frozenset({"GET", "POST", "PATCH", "DELETE"})

Callback = Callable[[Optional[BaseException], Any], Any]
Authenticator = Callable[[], TokenBundle]


def resolve(future: Future, error: Optional[BaseException], result: Any = None) -> bool:
    """Set the outcome unless the caller cancelled first. Returns False if it was not set."""
    try:
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)
    except InvalidStateError:
        return False
    return True


@dataclass(eq=False)
class Action:
    """One queued remote operation."""

    command: str
    method: str
    payload: Optional[bytes] = None
    stream_response: bool = False
    on_complete: Optional[Callback] = None
    future: Future = field(default_factory=Future, repr=False)
    auth_retries: int = 0
    _completed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.method not in METHODS:
            raise ValueError(f"Unsupported method: {self.method!r}")

    def start(self) -> bool:
        """Mark the future running before the first attempt. False if it was cancelled."""
        if self.future.running():
            return True
        try:
            return self.future.set_running_or_notify_cancel()
        except RuntimeError:
            return False

    def complete(self, error: Optional[BaseException], result: Any = None) -> None:
        """Fire the callback, then resolve the future; later calls are ignored.

        A future the caller already cancelled gets neither.
        """
        if self._completed:
            return
        self._completed = True
        if self.future.cancelled():
            _logger.debug("Dropping cancelled %s %s", self.method, self.command)
            self.start()
            return
        if self.on_complete is not None:
            try:
                self.on_complete(error, result)
            except Exception:
                _logger.exception("Callback for %s %s raised", self.method, self.command)
        resolve(self.future, error, result)


class BrokerSession:
    """Queue + auth state for one set of credentials."""

    def __init__(
        self,
        authenticator: Authenticator,
        transport: Transport,
        *,
        max_auth_retries: int = 1,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._authenticator = authenticator
        self._transport = transport
        self.max_auth_retries = max_auth_retries

        self._lock = threading.Lock()
        self._pending: Deque[Action] = deque()
        self._busy = False
        self.auth: Optional[TokenBundle] = None
        self.last_error: Optional[BaseException] = None

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="sfbroker")

    # --------------------------- Public API ---------------------------

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def enqueue(self, action: Action) -> Future:
        """Append ``action`` at the tail and make sure the loop is running."""
        with self._lock:
            self._pending.append(action)
        _logger.debug("Queued %s %s", action.method, action.command)
        self.drive()
        return action.future

    def drive(self) -> None:
        """Start draining unless there is nothing to do or a drain is running."""
        with self._lock:
            if not self._pending or self._busy:
                return
            if self.last_error is not None:
                failed = self._take_all()
                error = self.last_error
            else:
                self._busy = True
                failed = None

        if failed is not None:
            self._fail_all(failed, error)
            return
        try:
            self._executor.submit(self._drain)
        except RuntimeError as e:
            # Executor already shut down: nothing will ever drain this queue.
            closed = BrokerError(f"Session is closed: {e}")
            with self._lock:
                self._busy = False
                failed = self._take_all()
            self._fail_all(failed, closed)

    def close(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # --------------------------- Drain loop ---------------------------

    def _take_all(self) -> List[Action]:
        actions = list(self._pending)
        self._pending.clear()
        return actions

    def _fail_all(self, actions: List[Action], error: BaseException) -> None:
        if actions:
            _logger.warning("Failing %d queued action(s): %s", len(actions), error)
        for action in actions:
            action.complete(error)

    def _drain(self) -> None:
        try:
            while self._step():
                pass
        except BaseException:
            # Only reached on a bug in the loop itself; don't wedge the session.
            with self._lock:
                self._busy = False
            _logger.exception("Drain loop crashed")
            raise

    def _step(self) -> bool:
        """Run one login or one action. Returns False once the loop should stop."""
        with self._lock:
            if not self._pending:
                self._busy = False
                return False
            if self.last_error is not None:
                failed, error = self._take_all(), self.last_error
                self._busy = False
            else:
                failed = error = None
                auth = self.auth
                action = self._pending.popleft() if auth is not None else None

        if failed is not None:
            self._fail_all(failed, error)
            return False

        if auth is None:
            return self._login()

        assert action is not None
        if not action.start():
            _logger.debug("Skipping cancelled %s %s", action.method, action.command)
            return True
        self._dispatch(action, auth)
        return True

    def _login(self) -> bool:
        try:
            auth = self._authenticator()
        except Exception as e:
            _logger.error("Login failed: %s", e)
            with self._lock:
                self.last_error = e
                failed = self._take_all()
                self._busy = False
            self._fail_all(failed, e)
            return False

        _logger.info("Session logged in; instance host=%s token=%s", auth.instance_host, token_preview(auth.access_token))
        with self._lock:
            self.auth = auth
        return True

    def _dispatch(self, action: Action, auth: TokenBundle) -> None:
        try:
            result = self._transport.call(
                auth.access_token,
                auth.instance_host,
                action.command,
                action.method,
                action.payload,
                action.stream_response,
            )
        except AuthError as e:
            self._on_auth_error(action, e)
            return
        except Exception as e:
            action.complete(e)
            return
        action.complete(None, result)

    def _on_auth_error(self, action: Action, error: AuthError) -> None:
        if not error.retryable:
            _logger.warning("%s on %s %s; token cleared", error, action.method, action.command)
            with self._lock:
                self.auth = None
            action.complete(error)
            return

        if action.auth_retries < self.max_auth_retries:
            action.auth_retries += 1
            _logger.info(
                "Token rejected on %s %s; logging in again (retry %d/%d)",
                action.method,
                action.command,
                action.auth_retries,
                self.max_auth_retries,
            )
            with self._lock:
                self.auth = None
                self._pending.appendleft(action)
            return

        # A fresh token was rejected too: the login itself is not usable.
        fatal = AuthError(
            f"Not Authenticated after {action.auth_retries} re-login(s)",
            status=error.status,
        )
        fatal.__cause__ = error
        _logger.error("%s on %s %s; giving up on this session", fatal, action.method, action.command)
        with self._lock:
            self.auth = None
            self.last_error = fatal
            self._pending.appendleft(action)
