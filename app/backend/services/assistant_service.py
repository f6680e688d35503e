from __future__ import annotations

import logging
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

from app.backend import config, constants
from app.backend.adapters.assistants_adapter import AssistantsProvider, RunInfo, ThreadMessage
from app.backend.errors import (
	AssistantServiceError,
	ProviderNotFoundError,
	RunFailedError,
	RunTimeoutError,
)
from app.backend.schemas import QuizQuestion
from app.backend.services import prompts, response_parsing
from app.backend.services.response_parsing import ParseResult
from app.backend.services.thread_registry import RunTracker, SessionThreadRegistry


logger = logging.getLogger(__name__)

_CODE_INTERPRETER = [{"type": "code_interpreter"}]


@dataclass(frozen=True)
class RunResult:
	result_text: str
	run_id: str
	thread_id: str
	replied: bool = True


@dataclass(frozen=True)
class ChatReply:
	result: str
	run_id: str
	thread_id: str
	diagram: Optional[str] = None


def select_reply(messages: List[ThreadMessage], run_id: str) -> Optional[ThreadMessage]:
	"""Newest assistant message, preferring the ones produced by ``run_id``."""
	assistant = [message for message in messages if message.role == "assistant"]
	own = [message for message in assistant if message.run_id == run_id]
	candidates = own or assistant
	if not candidates:
		return None
	# max() keeps the first of equal timestamps; the provider lists newest first.
	return max(candidates, key=lambda message: message.created_at)


class AssistantRunCoordinator:
	"""Drives request/response cycles against provider threads.

	One instance is built at application start and shared by every request;
	it owns the session registry and the run side-table.
	"""

	def __init__(
		self,
		client: AssistantsProvider,
		registry: Optional[SessionThreadRegistry] = None,
		*,
		runs: Optional[RunTracker] = None,
		model: Optional[str] = None,
		run_timeout: Optional[float] = None,
		serialize_runs: Optional[bool] = None,
		sleep: Callable[[float], None] = time.sleep,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.client = client
		self.registry = registry or SessionThreadRegistry(client, ttl_seconds=config.session_ttl_seconds())
		self.runs = runs or RunTracker(ttl_seconds=config.session_ttl_seconds(), clock=clock)
		self._model = model
		self._run_timeout = run_timeout
		self._serialize_runs = config.serialize_thread_runs() if serialize_runs is None else serialize_runs
		self._sleep = sleep
		self._clock = clock
		# thread id -> [lock, number of callers holding or waiting on it]
		self._thread_locks: Dict[str, List[Any]] = {}
		self._thread_locks_guard = Lock()

	@property
	def model(self) -> str:
		return self._model or config.assistant_model()

	@property
	def run_timeout(self) -> float:
		return self._run_timeout if self._run_timeout is not None else config.run_timeout()

	@contextmanager
	def _locked_thread(self, thread_id: str) -> Iterator[None]:
		with self._thread_locks_guard:
			slot = self._thread_locks.setdefault(thread_id, [Lock(), 0])
			slot[1] += 1
		try:
			with slot[0]:
				yield
		finally:
			with self._thread_locks_guard:
				slot[1] -= 1
				if slot[1] == 0:
					del self._thread_locks[thread_id]

	def _thread_guard(self, thread_id: str) -> ContextManager[None]:
		if not self._serialize_runs:
			return nullcontext()
		return self._locked_thread(thread_id)

	def _wait_for_run(self, run: RunInfo, poll_interval: float) -> RunInfo:
		started = self._clock()
		current = run
		while current.status in constants.ACTIVE_RUN_STATUSES:
			waited = self._clock() - started
			if waited >= self.run_timeout:
				raise RunTimeoutError(run_id=run.id, waited_s=waited)
			self._sleep(poll_interval)
			current = self.client.retrieve_run(run.thread_id, run.id)
		return current

	def invoke(
		self,
		thread_id: str,
		user_message: Optional[str],
		instructions: str,
		*,
		poll_interval: Optional[float] = None,
		session_id: Optional[str] = None,
		tools: Optional[List[Dict[str, Any]]] = None,
		metadata: Optional[Dict[str, str]] = None,
		temperature: Optional[float] = None,
	) -> RunResult:
		"""Append ``user_message`` (if any), run the assistant and return its reply.

		Provider errors are logged and re-raised; a run ending in any status
		other than ``completed`` raises ``RunFailedError``.
		"""
		interval = config.chat_poll_interval() if poll_interval is None else poll_interval
		with self._thread_guard(thread_id):
			try:
				if user_message:
					self.client.create_message(thread_id, role="user", content=user_message)
				run = self.client.create_run(
					thread_id,
					model=self.model,
					instructions=instructions,
					tools=tools,
					metadata=metadata,
					temperature=temperature,
				)
				self.runs.record(session_id, thread_id, run.id)
				final = self._wait_for_run(run, interval)
				if final.status != "completed":
					self.runs.clear(session_id, run.id)
					raise RunFailedError(status=final.status, run_id=run.id)
				reply = select_reply(self.client.list_messages(thread_id), run.id)
			except AssistantServiceError as exc:
				logger.warning("Assistant run on thread %s failed: %s (%s)", thread_id, exc.message, exc.code)
				raise
		self.runs.clear(session_id, run.id)
		if reply is None or reply.text is None:
			logger.warning("Run %s completed without assistant text", run.id)
			return RunResult(result_text=constants.NO_RESPONSE_TEXT, run_id=run.id, thread_id=thread_id, replied=False)
		return RunResult(result_text=reply.text, run_id=run.id, thread_id=thread_id)

	def chat_reply(self, *, session_id: str, message: str, age: Optional[int], language: str) -> ChatReply:
		thread_id = self.registry.get_or_create_thread(session_id)
		result = self.invoke(
			thread_id,
			message,
			prompts.chat_instructions(age, language),
			poll_interval=config.chat_poll_interval(),
			session_id=session_id,
		)
		return ChatReply(
			result=result.result_text,
			run_id=result.run_id,
			thread_id=thread_id,
			diagram=response_parsing.extract_diagram(result.result_text),
		)

	def generate_quiz(
		self,
		*,
		thread_id: str,
		context: str,
		age: Optional[int],
		language: str,
		session_id: Optional[str] = None,
	) -> ParseResult[List[QuizQuestion]]:
		result = self.invoke(
			thread_id,
			None,
			prompts.quiz_instructions(age, language, context),
			poll_interval=config.long_poll_interval(),
			session_id=session_id,
			tools=_CODE_INTERPRETER,
			metadata=prompts.run_metadata(age, language, strict_context=True),
			temperature=config.temperature(),
		)
		if not result.replied:
			return ParseResult(ok=False, value=[], error="no assistant reply")
		return response_parsing.parse_quiz_questions(result.result_text)

	def generate_summary(
		self,
		*,
		thread_id: str,
		topic: str,
		age: Optional[int],
		language: str,
		session_id: Optional[str] = None,
	) -> ParseResult[Dict[str, str]]:
		self.client.retrieve_thread(thread_id)
		result = self.invoke(
			thread_id,
			None,
			prompts.summary_instructions(topic, age, language),
			poll_interval=config.long_poll_interval(),
			session_id=session_id,
			tools=_CODE_INTERPRETER,
			metadata=prompts.run_metadata(age, language),
			temperature=config.temperature(),
		)
		if not result.replied:
			return ParseResult(ok=False, value=response_parsing.split_title_and_body(""), error="no assistant reply")
		return response_parsing.parse_summary(result.result_text)

	def _usable_thread(self, thread_id: str, session_id: Optional[str]) -> str:
		try:
			self.client.retrieve_thread(thread_id)
		except ProviderNotFoundError:
			if not session_id:
				raise
			logger.warning("Thread %s not found; creating a new one for session %s", thread_id, session_id)
			self.registry.delete_thread(session_id)
			return self.registry.get_or_create_thread(session_id)
		return thread_id

	def generate_topic_questions(
		self,
		*,
		topic: str,
		thread_id: str,
		age: Optional[int],
		language: str,
		session_id: Optional[str] = None,
	) -> Tuple[ParseResult[List[str]], str]:
		thread_id = self._usable_thread(thread_id, session_id)
		result = self.invoke(
			thread_id,
			None,
			prompts.topic_instructions(topic, age, language),
			poll_interval=config.long_poll_interval(),
			session_id=session_id,
			tools=_CODE_INTERPRETER,
			metadata=prompts.run_metadata(age, language),
			temperature=config.temperature(),
		)
		if not result.replied:
			return ParseResult(ok=False, value=[], error="no assistant reply"), thread_id
		return response_parsing.parse_topic_questions(result.result_text), thread_id

	def cancel_run(
		self,
		*,
		thread_id: Optional[str] = None,
		run_id: Optional[str] = None,
		session_id: Optional[str] = None,
	) -> str:
		if not (thread_id and run_id):
			recorded = self.runs.get(session_id)
			if recorded is None:
				if session_id and not run_id:
					return "No active run for session"
				raise AssistantServiceError(
					status_code=400,
					code="validation_error",
					message="threadId and runId, or a sessionId with an active run, are required.",
				)
			thread_id = thread_id or recorded.thread_id
			run_id = run_id or recorded.run_id
		try:
			run = self.client.retrieve_run(thread_id, run_id)
		except ProviderNotFoundError:
			self.runs.clear(session_id, run_id)
			return "Run not found - already completed or expired"
		message = f"Run already {run.status}"
		if run.status in constants.CANCELLABLE_RUN_STATUSES:
			self.client.cancel_run(thread_id, run_id)
			logger.info("Cancelled run %s on thread %s", run_id, thread_id)
			message = "Run cancelled"
		self.runs.clear(session_id, run_id)
		return message

	def delete_thread(self, thread_id: str, *, session_id: Optional[str] = None) -> bool:
		"""Delete the provider thread and, for a known session, its registry entry."""
		try:
			self.client.delete_thread(thread_id)
			deleted = True
		except ProviderNotFoundError:
			logger.info("Thread %s already gone", thread_id)
			deleted = False
		if session_id:
			self.registry.delete_thread(session_id)
			self.runs.clear(session_id)
		return deleted
