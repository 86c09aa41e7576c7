import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fakes import FakeClock, make_token  # noqa: E402
from session_keeper.event_bus import API_ERROR, TOKEN_EXPIRED, EventBus  # noqa: E402
from session_keeper.expiry_watcher import ExpiryWatcher  # noqa: E402
from session_keeper.token_store import CredentialPair, TokenStore  # noqa: E402


class ExpiryWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.bus = EventBus()
        self.store = TokenStore()
        self.signals = []

    def _watcher(self, **kwargs) -> ExpiryWatcher:
        watcher = ExpiryWatcher(
            self.store,
            self.bus,
            on_session_expiring=self.signals.append,
            clock=self.clock,
            **kwargs,
        )
        self.addCleanup(watcher.stop)
        return watcher

    def _store_token(self, lifetime: float) -> None:
        self.store.set(CredentialPair(make_token(exp=self.clock() + lifetime), "R1"))

    def _expired_events(self):
        return [e for e in self.bus.events if e["event"] == TOKEN_EXPIRED]

    def test_start_checks_immediately(self) -> None:
        self._store_token(lifetime=10)
        self._watcher().start(run_thread=False)

        self.assertEqual(len(self.signals), 1)
        self.assertEqual(self.signals[0]["reason"], "token_expired")
        self.assertEqual(len(self._expired_events()), 1)

    def test_fresh_token_is_left_alone(self) -> None:
        self._store_token(lifetime=3600)
        watcher = self._watcher()
        watcher.start(run_thread=False)

        self.assertEqual(self.signals, [])
        self.assertEqual(watcher.next_check_at, self.clock() + 30 * 60)

    def test_no_token_no_signal(self) -> None:
        self._watcher().start(run_thread=False)
        self.assertEqual(self.bus.events, [])

    def test_interval_tick(self) -> None:
        self._store_token(lifetime=40 * 60)
        watcher = self._watcher()
        watcher.start(run_thread=False)

        self.clock.advance(29 * 60)
        watcher.tick()
        self.assertEqual(self.signals, [])

        self.clock.advance(60)
        watcher.tick()
        self.assertEqual(self.signals, [])

        self.clock.advance(30 * 60)
        watcher.tick()
        self.assertEqual(len(self.signals), 1)

    def test_navigation_triggers_check(self) -> None:
        self._store_token(lifetime=120)
        watcher = self._watcher()
        watcher.start(run_thread=False)
        self.clock.advance(100)

        self.assertTrue(watcher.on_navigation("/dashboard"))
        self.assertEqual(len(self.signals), 1)

    def test_signal_raised_once_per_episode(self) -> None:
        self._store_token(lifetime=10)
        watcher = self._watcher()
        watcher.start(run_thread=False)
        watcher.on_navigation("/a")
        self.bus.publish(API_ERROR, {"status": 401, "message": "Unauthorized"})

        self.assertEqual(len(self.signals), 1)
        self.assertTrue(watcher.signalled)

        self.bus.broadcast_session_status("active", {"role": "admin"})
        self.assertFalse(watcher.signalled)

    def test_api_errors_filtered_to_auth_failures(self) -> None:
        self._watcher().start(run_thread=False)

        self.bus.publish(API_ERROR, {"status": 500, "message": "Server error"})
        self.assertEqual(self.signals, [])

        self.bus.publish(API_ERROR, {"status": 400, "message": "Token expired"})
        self.assertEqual(len(self.signals), 1)

    def test_unknown_freshness_is_skipped(self) -> None:
        self.store.set(CredentialPair("opaque", "R1"))
        self.assertFalse(self._watcher().check())
        self.assertEqual(self.signals, [])

    def test_preemptive_refresh_keeps_session_quiet(self) -> None:
        self._store_token(lifetime=10)

        def refresh():
            self._store_token(lifetime=3600)
            return True

        self._watcher(refresh=refresh).start(run_thread=False)
        self.assertEqual(self.signals, [])
        self.assertEqual(self.bus.events, [])

    def test_stop_unsubscribes(self) -> None:
        watcher = self._watcher()
        watcher.start(run_thread=False)
        watcher.stop()

        self.bus.publish(TOKEN_EXPIRED, {"reason": "token_expired"})
        self.assertEqual(self.signals, [])
        self.assertIsNone(watcher.next_check_at)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
