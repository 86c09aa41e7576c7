import os
import sys
import threading
import time
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from session_keeper.error_handling import RefreshFailedError  # noqa: E402
from session_keeper.refresh_coordinator import CoordinatorState, RefreshCoordinator, RefreshEpisode, Waiter  # noqa: E402
from session_keeper.token_store import CredentialPair, TokenStore  # noqa: E402


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BlockingRefresh:
    """Refresh call that holds until released, so callers pile up behind it."""

    def __init__(self, result=None, error=None) -> None:
        self.release = threading.Event()
        self.calls = []
        self.result = result or {"accessToken": "A2", "expiresIn": 3600}
        self.error = error

    def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        self.release.wait(5)
        if self.error is not None:
            raise self.error
        return self.result


class RefreshCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = TokenStore()
        self.store.set(CredentialPair("A1", "R1"), expires_in=3600)
        self.failures = []

    def _coordinator(self, refresh_call, on_failure=None, **kwargs) -> RefreshCoordinator:
        return RefreshCoordinator(
            self.store,
            on_failure=on_failure or self.failures.append,
            refresh_call=refresh_call,
            **kwargs,
        )

    def _run_concurrently(self, coordinator, count):
        results = [None] * count

        def worker(i):
            try:
                results[i] = coordinator.refresh()
            except RefreshFailedError as exc:
                results[i] = exc

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        return threads, results

    def test_concurrent_callers_share_one_refresh(self) -> None:
        call = BlockingRefresh()
        coordinator = self._coordinator(call)

        threads, results = self._run_concurrently(coordinator, 5)
        self.assertTrue(wait_until(lambda: coordinator.pending_waiters == 4))
        self.assertEqual(coordinator.state, CoordinatorState.REFRESHING)
        call.release.set()
        for t in threads:
            t.join(5)

        self.assertEqual(call.calls, ["R1"])
        self.assertEqual(coordinator.refresh_count, 1)
        self.assertEqual(results, ["A2"] * 5)
        self.assertEqual(self.store.access_token, "A2")
        self.assertEqual(self.store.refresh_token, "R1")
        self.assertEqual(coordinator.state, CoordinatorState.IDLE)

    def test_slow_refresh_keeps_waiters_until_the_leader_settles(self) -> None:
        call = BlockingRefresh()
        coordinator = self._coordinator(call, wait_timeout=0.05)

        threads, results = self._run_concurrently(coordinator, 1)
        self.assertTrue(wait_until(lambda: call.calls))
        waiters, waiter_results = self._run_concurrently(coordinator, 1)
        self.assertTrue(wait_until(lambda: coordinator.pending_waiters == 1))

        with self.assertLogs("session_keeper.refresh_coordinator", level="WARNING"):
            time.sleep(0.2)
        call.release.set()
        for t in threads + waiters:
            t.join(5)

        self.assertEqual(results, ["A2"])
        self.assertEqual(waiter_results, ["A2"])
        self.assertEqual(self.failures, [])
        self.assertEqual(self.store.access_token, "A2")

    def test_waiters_released_in_arrival_order(self) -> None:
        episode = RefreshEpisode()
        released = []
        waiters = [episode.enqueue() for _ in range(3)]
        for index, waiter in enumerate(waiters):
            waiter.resolve = lambda token, i=index, w=waiter: (released.append(i), Waiter.resolve(w, token))

        episode.settle(token="A2")

        self.assertEqual(released, [0, 1, 2])
        self.assertEqual([w.wait(0) for w in waiters], ["A2"] * 3)
        self.assertEqual(len(episode.waiters), 0)

    def test_settle_without_token_rejects_waiters(self) -> None:
        episode = RefreshEpisode()
        waiter = episode.enqueue()
        episode.settle()
        with self.assertRaises(RefreshFailedError):
            waiter.wait(0)

    def test_sequential_refreshes_start_new_episodes(self) -> None:
        tokens = iter(["A2", "A3"])
        coordinator = self._coordinator(lambda rt: {"accessToken": next(tokens)})

        self.assertEqual(coordinator.refresh(), "A2")
        self.assertEqual(coordinator.refresh(), "A3")
        self.assertEqual(coordinator.refresh_count, 2)

    def test_rotated_refresh_token_is_stored(self) -> None:
        coordinator = self._coordinator(lambda rt: {"accessToken": "A2", "refreshToken": "R2", "expiresIn": 60})
        coordinator.refresh()
        self.assertEqual(self.store.refresh_token, "R2")

    def test_failure_is_broadcast_before_waiters_are_rejected(self) -> None:
        order = []
        waiter_errors = []
        call = BlockingRefresh(error=RefreshFailedError("Refresh token expired", status=401))

        def on_failure(failure):
            order.append(("broadcast", failure.status))
            self.store.clear()

        coordinator = self._coordinator(call, on_failure=on_failure)

        def waiter():
            try:
                coordinator.refresh()
            except RefreshFailedError as exc:
                order.append(("waiter", exc.status))
                waiter_errors.append(exc)

        leader_threads, leader_results = self._run_concurrently(coordinator, 1)
        self.assertTrue(wait_until(lambda: call.calls))
        waiters = [threading.Thread(target=waiter) for _ in range(3)]
        for t in waiters:
            t.start()
        self.assertTrue(wait_until(lambda: coordinator.pending_waiters == 3))
        call.release.set()
        for t in leader_threads + waiters:
            t.join(5)

        self.assertEqual(order[0], ("broadcast", 401))
        self.assertEqual(len(order), 4)
        self.assertEqual(len(waiter_errors), 3)
        self.assertIsInstance(leader_results[0], RefreshFailedError)
        self.assertEqual(coordinator.state, CoordinatorState.LOGGED_OUT)
        self.assertIsNone(self.store.access_token)

    def test_unexpected_errors_become_refresh_failures(self) -> None:
        def explode(refresh_token):
            raise RuntimeError("boom")

        coordinator = self._coordinator(explode)

        with self.assertRaises(RefreshFailedError) as ctx:
            coordinator.refresh()

        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(len(self.failures), 1)

    def test_missing_refresh_token_fails_without_network(self) -> None:
        calls = []
        self.store.clear()
        coordinator = self._coordinator(lambda rt: calls.append(rt) or {"accessToken": "A2"})

        with self.assertRaises(RefreshFailedError):
            coordinator.refresh()

        self.assertEqual(calls, [])
        self.assertEqual(len(self.failures), 1)

    def test_response_without_access_token_fails(self) -> None:
        coordinator = self._coordinator(lambda rt: {"success": True})
        with self.assertRaises(RefreshFailedError):
            coordinator.refresh()
        self.assertEqual(self.store.access_token, "A1")

    def test_reset_after_new_login(self) -> None:
        coordinator = self._coordinator(lambda rt: {})
        with self.assertRaises(RefreshFailedError):
            coordinator.refresh()
        self.assertEqual(coordinator.state, CoordinatorState.LOGGED_OUT)

        coordinator.reset()
        self.assertEqual(coordinator.state, CoordinatorState.IDLE)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
