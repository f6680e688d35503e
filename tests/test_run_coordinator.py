import threading
from concurrent.futures import ThreadPoolExecutor
from unittest import TestCase

from app.backend.adapters.assistants_adapter import ThreadMessage
from app.backend.errors import ProviderError, RunFailedError, RunTimeoutError
from app.backend.services.assistant_service import AssistantRunCoordinator, select_reply
from app.backend.services.thread_registry import SessionThreadRegistry

from fake_provider import FailingAssistantsClient, FakeAssistantsClient


class _FakeTime:
	def __init__(self) -> None:
		self.now = 0.0
		self.sleeps = []

	def clock(self) -> float:
		return self.now

	def sleep(self, seconds: float) -> None:
		self.sleeps.append(seconds)
		self.now += seconds


def _coordinator(client, fake_time=None, **kwargs) -> AssistantRunCoordinator:
	fake_time = fake_time or _FakeTime()
	kwargs.setdefault("run_timeout", 30.0)
	return AssistantRunCoordinator(
		client,
		model="gpt-test",
		sleep=fake_time.sleep,
		clock=fake_time.clock,
		**kwargs,
	)


class InvokeTests(TestCase):
	def test_completed_run_returns_reply_and_run_id(self) -> None:
		client = FakeAssistantsClient(statuses=["completed"], replies=["Light bends in water."])
		client.add_thread("thread_x")
		result = _coordinator(client).invoke("thread_x", "Why is the sky blue?", "be kind")
		self.assertEqual(result.result_text, "Light bends in water.")
		self.assertTrue(result.run_id.startswith("run_"))
		self.assertTrue(result.replied)

	def test_message_is_appended_before_run_is_created(self) -> None:
		client = FakeAssistantsClient()
		client.add_thread("thread_x")
		_coordinator(client).invoke("thread_x", "hello", "be kind")
		names = client.call_names()
		self.assertLess(names.index("create_message"), names.index("create_run"))

	def test_polls_at_interval_until_terminal(self) -> None:
		fake_time = _FakeTime()
		client = FakeAssistantsClient(statuses=["queued", "in_progress", "in_progress", "completed"])
		client.add_thread("thread_x")
		result = _coordinator(client, fake_time).invoke("thread_x", "hi", "x", poll_interval=1.5)
		self.assertEqual(result.result_text, "Plants make food from sunlight.")
		self.assertEqual(fake_time.sleeps, [1.5, 1.5, 1.5])
		self.assertEqual(client.call_names().count("retrieve_run"), 3)

	def test_failed_run_raises_with_status(self) -> None:
		client = FakeAssistantsClient(statuses=["queued", "failed"])
		client.add_thread("thread_x")
		with self.assertRaises(RunFailedError) as ctx:
			_coordinator(client).invoke("thread_x", "hi", "x", poll_interval=1.0)
		self.assertEqual(ctx.exception.status, "failed")
		self.assertIn("failed", ctx.exception.message)
		self.assertNotIn("list_messages", client.call_names())

	def test_requires_action_is_not_treated_as_success(self) -> None:
		client = FakeAssistantsClient(statuses=["requires_action"])
		client.add_thread("thread_x")
		with self.assertRaises(RunFailedError) as ctx:
			_coordinator(client).invoke("thread_x", "hi", "x")
		self.assertEqual(ctx.exception.status, "requires_action")

	def test_poll_loop_is_bounded(self) -> None:
		fake_time = _FakeTime()
		client = FakeAssistantsClient(statuses=["in_progress"])
		client.add_thread("thread_x")
		coordinator = _coordinator(client, fake_time, run_timeout=5.0)
		with self.assertRaises(RunTimeoutError) as ctx:
			coordinator.invoke("thread_x", "hi", "x", poll_interval=1.0, session_id="session-a")
		self.assertEqual(ctx.exception.status_code, 504)
		self.assertEqual(len(fake_time.sleeps), 5)
		self.assertEqual(coordinator.runs.get("session-a").run_id, ctx.exception.run_id)

	def test_failed_runs_leave_no_run_records(self) -> None:
		client = FakeAssistantsClient(statuses=["queued", "failed"])
		client.add_thread("thread_x")
		coordinator = _coordinator(client)
		for index in range(5):
			with self.assertRaises(RunFailedError):
				coordinator.invoke("thread_x", "hi", "x", poll_interval=1.0, session_id=f"session-{index}")
		self.assertEqual(len(coordinator.runs), 0)

	def test_transport_error_propagates(self) -> None:
		client = FailingAssistantsClient()
		client.add_thread("thread_x")
		with self.assertRaises(ProviderError):
			_coordinator(client).invoke("thread_x", "hi", "x")
		self.assertNotIn("create_run", client.call_names())

	def test_missing_reply_text_falls_back(self) -> None:
		client = FakeAssistantsClient()
		client.replies = [None]
		client.add_thread("thread_x")
		result = _coordinator(client).invoke("thread_x", "hi", "x")
		self.assertEqual(result.result_text, "(No response)")
		self.assertFalse(result.replied)

	def test_completed_run_clears_run_record(self) -> None:
		client = FakeAssistantsClient()
		client.add_thread("thread_x")
		coordinator = _coordinator(client)
		coordinator.invoke("thread_x", "hi", "x", session_id="session-a")
		self.assertIsNone(coordinator.runs.get("session-a"))


class SelectReplyTests(TestCase):
	def test_newest_assistant_message_wins_regardless_of_order(self) -> None:
		messages = [
			ThreadMessage(id="m2", role="assistant", text="second", created_at=20),
			ThreadMessage(id="m4", role="user", text="latest user", created_at=40),
			ThreadMessage(id="m3", role="assistant", text="third", created_at=30),
			ThreadMessage(id="m1", role="assistant", text="first", created_at=10),
		]
		self.assertEqual(select_reply(messages, "run_other").text, "third")

	def test_message_from_own_run_is_preferred(self) -> None:
		messages = [
			ThreadMessage(id="m3", role="assistant", text="other run", created_at=30, run_id="run_b"),
			ThreadMessage(id="m2", role="assistant", text="mine", created_at=20, run_id="run_a"),
		]
		self.assertEqual(select_reply(messages, "run_a").text, "mine")

	def test_no_assistant_message(self) -> None:
		messages = [ThreadMessage(id="m1", role="user", text="hi", created_at=1)]
		self.assertIsNone(select_reply(messages, "run_a"))


class ConcurrentInvokeTests(TestCase):
	def test_same_thread_invocations_are_serialized(self) -> None:
		client = FakeAssistantsClient(replies=["reply one", "reply two"])
		client.add_thread("thread_x")
		coordinator = AssistantRunCoordinator(client, model="gpt-test", run_timeout=5.0, serialize_runs=True)
		barrier = threading.Barrier(2)

		def ask(text: str) -> str:
			barrier.wait()
			return coordinator.invoke("thread_x", text, "x", poll_interval=0.0).result_text

		with ThreadPoolExecutor(max_workers=2) as pool:
			results = sorted(pool.map(ask, ["first", "second"]))

		self.assertEqual(results, ["reply one", "reply two"])
		names = [name for name in client.call_names() if name in {"create_message", "create_run", "list_messages"}]
		self.assertEqual(
			names,
			["create_message", "create_run", "list_messages", "create_message", "create_run", "list_messages"],
		)
		self.assertEqual(coordinator._thread_locks, {})

	def test_unserialized_invocations_still_return_own_run_reply(self) -> None:
		client = FakeAssistantsClient(replies=["reply one", "reply two"])
		client.add_thread("thread_x")
		coordinator = AssistantRunCoordinator(client, model="gpt-test", run_timeout=5.0, serialize_runs=False)
		first = coordinator.invoke("thread_x", "first", "x", poll_interval=0.0)
		second = coordinator.invoke("thread_x", "second", "x", poll_interval=0.0)
		self.assertEqual(first.result_text, "reply one")
		self.assertEqual(second.result_text, "reply two")
		self.assertNotEqual(first.run_id, second.run_id)

	def test_thread_locks_do_not_outlive_evicted_sessions(self) -> None:
		fake_time = _FakeTime()
		client = FakeAssistantsClient()
		registry = SessionThreadRegistry(client, ttl_seconds=60, clock=fake_time.clock)
		coordinator = _coordinator(client, fake_time, registry=registry, serialize_runs=True)
		for index in range(20):
			coordinator.chat_reply(session_id=f"session-{index}", message="hi", age=9, language="en")
			fake_time.now += 120
		self.assertIsNone(registry.get_thread("session-0"))
		self.assertEqual(len(registry), 0)
		self.assertEqual(coordinator._thread_locks, {})


class CancelAndDeleteTests(TestCase):
	def test_cancel_unknown_run_is_success(self) -> None:
		client = FakeAssistantsClient()
		message = _coordinator(client).cancel_run(thread_id="thread_x", run_id="run_missing")
		self.assertIn("not found", message)
		self.assertNotIn("cancel_run", client.call_names())

	def test_cancel_active_run_uses_session_record(self) -> None:
		fake_time = _FakeTime()
		client = FakeAssistantsClient(statuses=["in_progress"])
		client.add_thread("thread_x")
		coordinator = _coordinator(client, fake_time, run_timeout=1.0)
		with self.assertRaises(RunTimeoutError):
			coordinator.invoke("thread_x", "hi", "x", poll_interval=1.0, session_id="session-a")

		message = coordinator.cancel_run(session_id="session-a")
		self.assertEqual(message, "Run cancelled")
		self.assertIn("cancel_run", client.call_names())
		self.assertIsNone(coordinator.runs.get("session-a"))

	def test_cancel_finished_run_is_noop(self) -> None:
		client = FakeAssistantsClient()
		client.add_thread("thread_x")
		coordinator = _coordinator(client)
		result = coordinator.invoke("thread_x", "hi", "x")
		message = coordinator.cancel_run(thread_id="thread_x", run_id=result.run_id)
		self.assertEqual(message, "Run already completed")
		self.assertNotIn("cancel_run", client.call_names())

	def test_cancel_of_older_run_keeps_newer_record(self) -> None:
		client = FakeAssistantsClient()
		client.add_thread("thread_x")
		coordinator = _coordinator(client)
		finished = coordinator.invoke("thread_x", "hi", "x")
		coordinator.runs.record("session-a", "thread_x", "run_newer")

		message = coordinator.cancel_run(thread_id="thread_x", run_id=finished.run_id, session_id="session-a")
		self.assertEqual(message, "Run already completed")
		self.assertEqual(coordinator.runs.get("session-a").run_id, "run_newer")

	def test_delete_thread_drops_session_mapping(self) -> None:
		client = FakeAssistantsClient()
		coordinator = _coordinator(client)
		thread_id = coordinator.registry.get_or_create_thread("session-a")
		self.assertTrue(coordinator.delete_thread(thread_id, session_id="session-a"))
		self.assertIsNone(coordinator.registry.get_thread("session-a"))
		self.assertFalse(coordinator.delete_thread(thread_id))


class VariantTests(TestCase):
	def test_chat_reply_splits_out_diagram(self) -> None:
		reply = "Look:\n```mermaid\ngraph TD\nA[\"Sun\"] --> B[\"Leaf\"]\n```\nLeaves catch light."
		client = FakeAssistantsClient(replies=[reply])
		chat = _coordinator(client).chat_reply(session_id="session-a", message="photosynthesis?", age=7, language="en")
		self.assertEqual(chat.result, reply)
		self.assertTrue(chat.diagram.startswith("graph TD"))
		self.assertEqual(chat.thread_id, "thread_1")

	def test_quiz_variant_parses_questions(self) -> None:
		payload = '[{"question": "2+2?", "options": ["3", "4"], "correctAnswer": 1, "explanation": "Add."}]'
		client = FakeAssistantsClient(replies=[payload])
		client.add_thread("thread_x")
		parsed = _coordinator(client).generate_quiz(thread_id="thread_x", context="math", age=8, language="en")
		self.assertTrue(parsed.ok)
		self.assertEqual(parsed.value[0].correct_answer, 1)
		create_run = [call for call in client.calls if call[0] == "create_run"][0]
		self.assertEqual(create_run[3], [{"type": "code_interpreter"}])
		self.assertEqual(create_run[4]["strict_context"], "enabled")
		self.assertNotIn("create_message", client.call_names())

	def test_quiz_variant_with_declined_output_is_empty(self) -> None:
		client = FakeAssistantsClient(replies=["Sorry, I cannot make a quiz about that."])
		client.add_thread("thread_x")
		parsed = _coordinator(client).generate_quiz(thread_id="thread_x", context="", age=8, language="en")
		self.assertFalse(parsed.ok)
		self.assertEqual(parsed.value, [])

	def test_topic_questions_recover_from_missing_thread(self) -> None:
		client = FakeAssistantsClient(replies=['{"topicQuestions": ["What is $\\frac{1}{2}$ of 8?"]}'])
		coordinator = _coordinator(client)
		parsed, thread_id = coordinator.generate_topic_questions(
			topic="fractions", thread_id="thread_gone", age=10, language="en", session_id="session-a"
		)
		self.assertTrue(parsed.ok)
		self.assertEqual(parsed.value, ["What is $\\frac{1}{2}$ of 8?"])
		self.assertNotEqual(thread_id, "thread_gone")
		self.assertEqual(coordinator.registry.get_thread("session-a"), thread_id)

	def test_summary_variant_falls_back_to_text_split(self) -> None:
		client = FakeAssistantsClient(replies=["Magnets\n\nMagnets pull iron and have two poles."])
		client.add_thread("thread_x")
		parsed = _coordinator(client).generate_summary(thread_id="thread_x", topic="magnets", age=9, language="en")
		self.assertFalse(parsed.ok)
		self.assertEqual(parsed.value["title"], "Magnets")
		self.assertEqual(parsed.value["summaryExplanation"], "Magnets pull iron and have two poles.")
