"""Tests for lifecycle hooks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ix_sso import FailedLoginTracker, LifecycleEvent, LifecycleHooks
from ix_sso.utils.logging import REDACTED


class TestLifecycleHooks:
    """Registration and dispatch"""

    @pytest.mark.asyncio
    async def test_callbacks_run_in_registration_order(self, hooks):
        calls = []
        hooks.register(LifecycleEvent.LOGIN_SUCCEEDED, lambda p: calls.append(("first", p)))
        hooks.register(LifecycleEvent.LOGIN_SUCCEEDED, lambda p: calls.append(("second", p)))

        await hooks.emit(LifecycleEvent.LOGIN_SUCCEEDED, {"user_id": "1"})

        assert calls == [("first", {"user_id": "1"}), ("second", {"user_id": "1"})]

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, hooks):
        callback = AsyncMock()
        hooks.register(LifecycleEvent.TOKEN_REFRESHED, callback)

        await hooks.emit(LifecycleEvent.TOKEN_REFRESHED)

        callback.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_failing_callback_is_skipped(self):
        logger = MagicMock()
        hooks = LifecycleHooks(logger=logger)
        after = MagicMock()

        def broken(payload):
            raise RuntimeError("audit table missing")

        hooks.register(LifecycleEvent.LOGOUT_SUCCEEDED, broken)
        hooks.register(LifecycleEvent.LOGOUT_SUCCEEDED, after)

        await hooks.emit(LifecycleEvent.LOGOUT_SUCCEEDED, {"user_id": "1"})

        after.assert_called_once_with({"user_id": "1"})
        logger.error.assert_called_once()
        assert logger.error.call_args.kwargs["hook"] == "broken"

    @pytest.mark.asyncio
    async def test_events_are_isolated(self, hooks):
        callback = MagicMock()
        hooks.register(LifecycleEvent.LOGIN_FAILED, callback)

        await hooks.emit(LifecycleEvent.LOGIN_SUCCEEDED)

        callback.assert_not_called()

    def test_unregister(self, hooks):
        callback = MagicMock()
        hooks.register("login_failed", callback)

        hooks.unregister(LifecycleEvent.LOGIN_FAILED, callback)
        hooks.unregister(LifecycleEvent.LOGIN_FAILED, callback)

        assert hooks.callbacks(LifecycleEvent.LOGIN_FAILED) == []

    def test_defaults(self):
        hooks = LifecycleHooks.with_defaults()

        assert len(hooks.callbacks(LifecycleEvent.LOGIN_SUCCEEDED)) == 1
        assert len(hooks.callbacks(LifecycleEvent.LOGIN_FAILED)) == 1
        assert len(hooks.callbacks(LifecycleEvent.LOGOUT_SUCCEEDED)) == 1
        assert hooks.callbacks(LifecycleEvent.TOKEN_REFRESHED) == []

    @pytest.mark.asyncio
    async def test_default_failure_hook_redacts_callback_data(self):
        logger = MagicMock()
        hooks = LifecycleHooks.with_defaults(logger=logger)

        await hooks.emit(
            LifecycleEvent.LOGIN_FAILED,
            {"status_code": 403, "query_params": {"code": "c", "state": "s", "iss": "x"}},
        )

        kwargs = logger.warning.call_args.kwargs
        assert kwargs["callback_data"] == {"code": REDACTED, "state": REDACTED, "iss": "x"}
        assert kwargs["status_code"] == 403


class TestFailedLoginTracker:
    """Repeated failure detection"""

    def test_warns_at_threshold(self):
        logger = MagicMock()
        tracker = FailedLoginTracker(
            threshold=3, window_seconds=60, clock=lambda: 100.0, logger=logger
        )

        tracker({"ip_address": "10.0.0.1"})
        tracker({"ip_address": "10.0.0.1"})
        logger.warning.assert_not_called()

        tracker({"ip_address": "10.0.0.1"})

        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["attempts"] == 3

    def test_old_attempts_expire(self):
        now = [0.0]
        tracker = FailedLoginTracker(threshold=3, window_seconds=60, clock=lambda: now[0])

        tracker({"ip_address": "10.0.0.1"})
        tracker({"ip_address": "10.0.0.1"})
        now[0] = 61.0

        assert tracker.attempts("10.0.0.1") == 0

    def test_ips_are_counted_separately(self):
        tracker = FailedLoginTracker(threshold=5, clock=lambda: 1.0)

        tracker({"ip_address": "10.0.0.1"})
        tracker({"ip_address": "10.0.0.2"})
        tracker({})

        assert tracker.attempts("10.0.0.1") == 1
        assert tracker.attempts("10.0.0.2") == 1

    @pytest.mark.asyncio
    async def test_registered_as_hook(self, hooks):
        tracker = FailedLoginTracker(threshold=2, clock=lambda: 1.0)
        hooks.register(LifecycleEvent.LOGIN_FAILED, tracker)

        await hooks.emit(LifecycleEvent.LOGIN_FAILED, {"ip_address": "10.0.0.1"})

        assert tracker.attempts("10.0.0.1") == 1
