"""Post-condition hooks for login, logout and token refresh.

Callbacks run in registration order after the state transition they observe
has completed. A failing callback is logged and skipped; it never aborts the
main flow or the remaining callbacks.
"""

import inspect
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .utils.logging import get_logger, redact

HookCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


class LifecycleEvent(str, Enum):
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGOUT_SUCCEEDED = "logout_succeeded"
    TOKEN_REFRESHED = "token_refreshed"


class LifecycleHooks:
    """
    Callback registry keyed by lifecycle event.

    Example usage:
        hooks = LifecycleHooks.with_defaults(logger=logger)

        async def audit(payload):
            await audit_log.write("sso_login", payload["user_id"])

        hooks.register(LifecycleEvent.LOGIN_SUCCEEDED, audit)
        await hooks.emit(LifecycleEvent.LOGIN_SUCCEEDED, {"user_id": str(user.id)})
    """

    def __init__(self, logger=None):
        self.logger = logger or get_logger(__name__)
        self._callbacks: dict[LifecycleEvent, list[HookCallback]] = {
            event: [] for event in LifecycleEvent
        }

    @classmethod
    def with_defaults(cls, logger=None) -> "LifecycleHooks":
        """Registry with the logging hooks for success, failure and logout."""
        hooks = cls(logger=logger)
        hooks.register(LifecycleEvent.LOGIN_SUCCEEDED, log_login_success(hooks.logger))
        hooks.register(LifecycleEvent.LOGIN_FAILED, log_login_failure(hooks.logger))
        hooks.register(LifecycleEvent.LOGOUT_SUCCEEDED, log_logout(hooks.logger))
        return hooks

    def register(self, event: LifecycleEvent, callback: HookCallback) -> None:
        self._callbacks[LifecycleEvent(event)].append(callback)

    def unregister(self, event: LifecycleEvent, callback: HookCallback) -> None:
        callbacks = self._callbacks[LifecycleEvent(event)]
        if callback in callbacks:
            callbacks.remove(callback)

    def callbacks(self, event: LifecycleEvent) -> list[HookCallback]:
        return list(self._callbacks[LifecycleEvent(event)])

    async def emit(self, event: LifecycleEvent, payload: dict[str, Any] | None = None) -> None:
        """
        Run every callback registered for ``event``.

        Args:
            event: Lifecycle event
            payload: Event data passed to each callback
        """
        payload = payload or {}
        for callback in self.callbacks(event):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    "Lifecycle hook failed",
                    lifecycle_event=LifecycleEvent(event).value,
                    hook=getattr(callback, "__name__", callback.__class__.__name__),
                    exception=e.__class__.__name__,
                    message=str(e),
                )


# ==================== DEFAULT HOOKS ====================


def log_login_success(logger=None) -> HookCallback:
    logger = logger or get_logger(__name__)

    def _log_login_success(payload: dict[str, Any]) -> None:
        logger.info(
            "SSO login successful",
            user_id=payload.get("user_id"),
            user_email=payload.get("email"),
            subject=payload.get("subject"),
            preferred_username=payload.get("preferred_username"),
            email_verified=payload.get("email_verified"),
        )

    return _log_login_success


def log_login_failure(logger=None) -> HookCallback:
    logger = logger or get_logger(__name__)

    def _log_login_failure(payload: dict[str, Any]) -> None:
        logger.warning(
            "SSO login failed",
            exception_type=payload.get("exception_type"),
            exception_message=payload.get("message"),
            status_code=payload.get("status_code"),
            reason=payload.get("reason"),
            ip_address=payload.get("ip_address"),
            callback_data=redact(payload.get("query_params") or {}),
        )

    return _log_login_failure


def log_logout(logger=None) -> HookCallback:
    logger = logger or get_logger(__name__)

    def _log_logout(payload: dict[str, Any]) -> None:
        logger.info(
            "SSO logout successful",
            user_id=payload.get("user_id"),
            user_email=payload.get("email"),
            idp_session_revoked=payload.get("idp_session_revoked"),
        )

    return _log_logout


class FailedLoginTracker:
    """
    LOGIN_FAILED hook counting failures per client IP in a sliding window.

    Logs a warning once an IP reaches ``threshold`` failures within
    ``window_seconds``. Payloads without ``ip_address`` are ignored.
    """

    def __init__(
        self,
        threshold: int = 5,
        window_seconds: float = 900,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self.logger = logger or get_logger(__name__)
        self._attempts: dict[str, list[float]] = {}

    def attempts(self, ip_address: str) -> int:
        cutoff = self._clock() - self.window_seconds
        recent = [t for t in self._attempts.get(ip_address, []) if t > cutoff]
        if recent:
            self._attempts[ip_address] = recent
        else:
            self._attempts.pop(ip_address, None)
        return len(recent)

    def __call__(self, payload: dict[str, Any]) -> None:
        ip_address = payload.get("ip_address")
        if not ip_address:
            return

        self._attempts.setdefault(ip_address, []).append(self._clock())
        attempts = self.attempts(ip_address)

        if attempts >= self.threshold:
            self.logger.warning(
                "Multiple failed SSO login attempts detected",
                ip_address=ip_address,
                attempts=attempts,
                window_seconds=self.window_seconds,
            )
