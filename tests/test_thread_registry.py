import threading
from concurrent.futures import ThreadPoolExecutor
from unittest import TestCase

from app.backend.errors import ProviderError
from app.backend.services.thread_registry import RunTracker, SessionThreadRegistry

from fake_provider import FakeAssistantsClient


class _ManualClock:
	def __init__(self) -> None:
		self.now = 1000.0

	def __call__(self) -> float:
		return self.now


class SessionThreadRegistryTests(TestCase):
	def test_concurrent_first_requests_create_exactly_one_thread(self) -> None:
		client = FakeAssistantsClient(create_delay=0.05)
		registry = SessionThreadRegistry(client)
		workers = 16
		barrier = threading.Barrier(workers)

		def resolve(_index: int) -> str:
			barrier.wait()
			return registry.get_or_create_thread("session-a")

		with ThreadPoolExecutor(max_workers=workers) as pool:
			results = list(pool.map(resolve, range(workers)))

		self.assertEqual(client.call_names().count("create_thread"), 1)
		self.assertEqual(len(set(results)), 1)
		self.assertEqual(results[0], registry.get_thread("session-a"))

	def test_distinct_sessions_get_distinct_threads(self) -> None:
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client)
		first = registry.get_or_create_thread("session-a")
		second = registry.get_or_create_thread("session-b")
		self.assertNotEqual(first, second)
		self.assertEqual(len(registry), 2)

	def test_sequential_lookup_reuses_thread(self) -> None:
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client)
		first = registry.get_or_create_thread("session-a")
		second = registry.get_or_create_thread("session-a")
		self.assertEqual(first, second)
		self.assertEqual(client.call_names().count("create_thread"), 1)

	def test_delete_then_get_creates_new_thread(self) -> None:
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client)
		registry.get_or_create_thread("session-a")
		self.assertTrue(registry.delete_thread("session-a"))
		self.assertIsNone(registry.get_thread("session-a"))
		registry.get_or_create_thread("session-a")
		self.assertEqual(client.call_names().count("create_thread"), 2)

	def test_delete_unknown_session_returns_false(self) -> None:
		registry = SessionThreadRegistry(FakeAssistantsClient())
		self.assertFalse(registry.delete_thread("missing"))

	def test_failed_creation_is_not_stored(self) -> None:
		client = FakeAssistantsClient(create_error=ProviderError())
		registry = SessionThreadRegistry(client)
		with self.assertRaises(ProviderError):
			registry.get_or_create_thread("session-a")
		self.assertIsNone(registry.get_thread("session-a"))

		client.create_error = None
		thread_id = registry.get_or_create_thread("session-a")
		self.assertTrue(thread_id.startswith("thread_"))
		self.assertEqual(client.call_names().count("create_thread"), 2)

	def test_empty_session_id_rejected_without_provider_call(self) -> None:
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client)
		with self.assertRaises(ValueError):
			registry.get_or_create_thread("")
		self.assertEqual(client.calls, [])

	def test_idle_sessions_expire(self) -> None:
		clock = _ManualClock()
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client, ttl_seconds=60, clock=clock)
		first = registry.get_or_create_thread("session-a")

		clock.now += 30
		self.assertEqual(registry.get_or_create_thread("session-a"), first)

		clock.now += 61
		self.assertIsNone(registry.get_thread("session-a"))
		registry.get_or_create_thread("session-a")
		self.assertEqual(client.call_names().count("create_thread"), 2)


class RunTrackerTests(TestCase):
	def test_record_and_clear(self) -> None:
		tracker = RunTracker()
		tracker.record("session-a", "thread_1", "run_1")
		ref = tracker.get("session-a")
		self.assertEqual((ref.thread_id, ref.run_id), ("thread_1", "run_1"))
		tracker.clear("session-a")
		self.assertIsNone(tracker.get("session-a"))

	def test_clear_for_stale_run_keeps_newer_entry(self) -> None:
		tracker = RunTracker()
		tracker.record("session-a", "thread_1", "run_1")
		tracker.record("session-a", "thread_1", "run_2")
		tracker.clear("session-a", "run_1")
		self.assertEqual(tracker.get("session-a").run_id, "run_2")

	def test_missing_session_is_ignored(self) -> None:
		tracker = RunTracker()
		tracker.record(None, "thread_1", "run_1")
		self.assertIsNone(tracker.get(None))

	def test_stale_records_expire(self) -> None:
		clock = _ManualClock()
		tracker = RunTracker(ttl_seconds=60, clock=clock)
		tracker.record("session-a", "thread_1", "run_1")
		clock.now += 30
		tracker.record("session-b", "thread_2", "run_2")

		clock.now += 45
		self.assertIsNone(tracker.get("session-a"))
		self.assertEqual(tracker.get("session-b").run_id, "run_2")
		self.assertEqual(len(tracker), 1)
