from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from app.backend.adapters.assistants_adapter import AssistantsProvider


logger = logging.getLogger(__name__)


@dataclass
class _ThreadEntry:
	thread_id: str
	last_used: float


@dataclass(frozen=True)
class RunRef:
	thread_id: str
	run_id: str


class SessionThreadRegistry:
	"""Maps session ids to provider thread ids, creating each thread exactly once.

	A single registry-wide lock covers the whole check-then-create sequence,
	including the provider call, so concurrent first requests for the same
	session share one thread. Entries idle for longer than ``ttl_seconds`` are
	evicted lazily, which has the same effect as ``delete_thread``.
	"""

	def __init__(
		self,
		client: AssistantsProvider,
		*,
		ttl_seconds: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._client = client
		self._ttl_seconds = ttl_seconds
		self._clock = clock
		self._entries: Dict[str, _ThreadEntry] = {}
		self._lock = Lock()

	def _evict_expired_locked(self) -> None:
		if not self._ttl_seconds:
			return
		now = self._clock()
		expired: List[str] = [
			session_id
			for session_id, entry in self._entries.items()
			if now - entry.last_used > self._ttl_seconds
		]
		for session_id in expired:
			entry = self._entries.pop(session_id)
			logger.info("Evicted idle session %s (thread %s)", session_id, entry.thread_id)

	def get_or_create_thread(self, session_id: str) -> str:
		if not session_id:
			raise ValueError("session_id must be a non-empty string.")
		with self._lock:
			self._evict_expired_locked()
			entry = self._entries.get(session_id)
			if entry is not None:
				entry.last_used = self._clock()
				logger.debug("Using existing thread %s for session %s", entry.thread_id, session_id)
				return entry.thread_id
			thread_id = self._client.create_thread()
			self._entries[session_id] = _ThreadEntry(thread_id=thread_id, last_used=self._clock())
			logger.info("Created thread %s for session %s", thread_id, session_id)
			return thread_id

	def get_thread(self, session_id: str) -> Optional[str]:
		with self._lock:
			self._evict_expired_locked()
			entry = self._entries.get(session_id)
			return entry.thread_id if entry is not None else None

	def delete_thread(self, session_id: str) -> bool:
		"""Forget the session's mapping. The provider thread itself is left alone."""
		with self._lock:
			entry = self._entries.pop(session_id, None)
		if entry is None:
			return False
		logger.info("Removed thread %s for session %s", entry.thread_id, session_id)
		return True

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)


class RunTracker:
	"""Best-effort record of the latest run per session, used for cancellation.

	Entries older than ``ttl_seconds`` are dropped lazily, like idle registry
	sessions.
	"""

	def __init__(
		self,
		*,
		ttl_seconds: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._ttl_seconds = ttl_seconds
		self._clock = clock
		self._runs: Dict[str, Tuple[RunRef, float]] = {}
		self._lock = Lock()

	def _evict_expired_locked(self) -> None:
		if not self._ttl_seconds:
			return
		now = self._clock()
		expired = [
			session_id
			for session_id, (_ref, recorded_at) in self._runs.items()
			if now - recorded_at > self._ttl_seconds
		]
		for session_id in expired:
			del self._runs[session_id]

	def record(self, session_id: Optional[str], thread_id: str, run_id: str) -> None:
		if not session_id:
			return
		with self._lock:
			self._evict_expired_locked()
			self._runs[session_id] = (RunRef(thread_id=thread_id, run_id=run_id), self._clock())

	def get(self, session_id: Optional[str]) -> Optional[RunRef]:
		if not session_id:
			return None
		with self._lock:
			self._evict_expired_locked()
			current = self._runs.get(session_id)
			return current[0] if current is not None else None

	def clear(self, session_id: Optional[str], run_id: Optional[str] = None) -> None:
		"""Drop the session's entry; with ``run_id``, only if it still points at that run."""
		if not session_id:
			return
		with self._lock:
			current = self._runs.get(session_id)
			if current is None:
				return
			if run_id is None or current[0].run_id == run_id:
				del self._runs[session_id]

	def __len__(self) -> int:
		with self._lock:
			return len(self._runs)
