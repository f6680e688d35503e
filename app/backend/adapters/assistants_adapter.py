from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

import openai

from app.backend import config, constants
from app.backend.errors import (
	AssistantServiceError,
	ProviderError,
	ProviderNotFoundError,
	ProviderTimeoutError,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunInfo:
	id: str
	thread_id: str
	status: str


@dataclass(frozen=True)
class ThreadMessage:
	id: str
	role: str
	text: Optional[str]
	created_at: int = 0
	run_id: Optional[str] = None


class AssistantsProvider(Protocol):
	"""Capability set of an Assistants-style provider (threads, messages, runs)."""

	def create_thread(self) -> str: ...

	def retrieve_thread(self, thread_id: str) -> str: ...

	def delete_thread(self, thread_id: str) -> None: ...

	def create_message(self, thread_id: str, *, role: str, content: str) -> None: ...

	def create_run(
		self,
		thread_id: str,
		*,
		model: str,
		instructions: str,
		tools: Optional[List[Dict[str, Any]]] = None,
		metadata: Optional[Dict[str, str]] = None,
		temperature: Optional[float] = None,
	) -> RunInfo: ...

	def retrieve_run(self, thread_id: str, run_id: str) -> RunInfo: ...

	def cancel_run(self, thread_id: str, run_id: str) -> RunInfo: ...

	def list_messages(self, thread_id: str) -> List[ThreadMessage]: ...


def _provider_error(exc: Exception) -> ProviderError:
	if isinstance(exc, openai.NotFoundError):
		return ProviderNotFoundError(str(getattr(exc, "message", "")) or "Assistant provider resource not found.")
	if isinstance(exc, (openai.APITimeoutError, TimeoutError)):
		return ProviderTimeoutError()
	return ProviderError()


def _first_text(content: Any) -> Optional[str]:
	if not isinstance(content, list):
		return None
	for part in content:
		text = getattr(part, "text", None)
		if text is None and isinstance(part, dict):
			text = part.get("text")
		value = getattr(text, "value", None)
		if value is None and isinstance(text, dict):
			value = text.get("value")
		if isinstance(value, str):
			return value
	return None


def _to_message(raw: Any) -> ThreadMessage:
	return ThreadMessage(
		id=str(getattr(raw, "id", "")),
		role=str(getattr(raw, "role", "")),
		text=_first_text(getattr(raw, "content", None)),
		created_at=int(getattr(raw, "created_at", 0) or 0),
		run_id=getattr(raw, "run_id", None),
	)


def _to_run(raw: Any, thread_id: str) -> RunInfo:
	return RunInfo(
		id=str(raw.id),
		thread_id=str(getattr(raw, "thread_id", None) or thread_id),
		status=str(raw.status),
	)


def build_sdk_client() -> Any:
	api_key = config.require_provider_api_key()
	timeout_s = config.openai_timeout()
	if config.provider_kind() == "azure":
		return openai.AzureOpenAI(
			azure_endpoint=config.azure_endpoint(),
			api_version=config.azure_api_version(),
			api_key=api_key,
			timeout=timeout_s,
		)
	return openai.OpenAI(api_key=api_key, timeout=timeout_s)


class OpenAIAssistantsClient:
	"""`AssistantsProvider` backed by the openai SDK's beta Assistants API.

	The SDK client and the assistant are both created on first use, so the
	application starts without credentials and fails per request with a 503
	service error instead.
	"""

	def __init__(self, sdk_client: Any = None) -> None:
		self._sdk = sdk_client
		self._assistant_id: Optional[str] = None
		self._lock = Lock()

	@property
	def sdk(self) -> Any:
		with self._lock:
			if self._sdk is None:
				self._sdk = build_sdk_client()
			return self._sdk

	def ensure_assistant(self) -> str:
		configured = config.assistant_id()
		if configured:
			return configured
		sdk = self.sdk
		with self._lock:
			if self._assistant_id is None:
				try:
					assistant = sdk.beta.assistants.create(
						model=config.assistant_model(),
						name=constants.DEFAULT_ASSISTANT_NAME,
						instructions="",
						tools=[],
						temperature=config.temperature(),
						top_p=1,
					)
				except openai.OpenAIError as exc:
					logger.exception("Assistant creation failed")
					raise _provider_error(exc) from exc
				self._assistant_id = str(assistant.id)
				logger.info("Created assistant %s", self._assistant_id)
			return self._assistant_id

	def create_thread(self) -> str:
		try:
			thread = self.sdk.beta.threads.create()
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return str(thread.id)

	def retrieve_thread(self, thread_id: str) -> str:
		try:
			thread = self.sdk.beta.threads.retrieve(thread_id)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return str(thread.id)

	def delete_thread(self, thread_id: str) -> None:
		try:
			self.sdk.beta.threads.delete(thread_id)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc

	def create_message(self, thread_id: str, *, role: str, content: str) -> None:
		try:
			self.sdk.beta.threads.messages.create(thread_id, role=role, content=content)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc

	def create_run(
		self,
		thread_id: str,
		*,
		model: str,
		instructions: str,
		tools: Optional[List[Dict[str, Any]]] = None,
		metadata: Optional[Dict[str, str]] = None,
		temperature: Optional[float] = None,
	) -> RunInfo:
		params: Dict[str, Any] = {
			"assistant_id": self.ensure_assistant(),
			"model": model,
			"instructions": instructions,
		}
		if tools is not None:
			params["tools"] = tools
		if metadata is not None:
			params["metadata"] = metadata
		if temperature is not None:
			params["temperature"] = temperature
		try:
			run = self.sdk.beta.threads.runs.create(thread_id, **params)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return _to_run(run, thread_id)

	def retrieve_run(self, thread_id: str, run_id: str) -> RunInfo:
		try:
			run = self.sdk.beta.threads.runs.retrieve(run_id=run_id, thread_id=thread_id)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return _to_run(run, thread_id)

	def cancel_run(self, thread_id: str, run_id: str) -> RunInfo:
		try:
			run = self.sdk.beta.threads.runs.cancel(run_id=run_id, thread_id=thread_id)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return _to_run(run, thread_id)

	def list_messages(self, thread_id: str) -> List[ThreadMessage]:
		try:
			page = self.sdk.beta.threads.messages.list(thread_id, order="desc", limit=20)
		except openai.OpenAIError as exc:
			raise _provider_error(exc) from exc
		return [_to_message(item) for item in getattr(page, "data", [])]


def provider_status() -> Dict[str, object]:
	warnings: List[str] = []
	ready = config.provider_ready()
	if not ready:
		name = "AZURE_OPENAI_KEY" if config.provider_kind() == "azure" else "OPENAI_API_KEY"
		warnings.append(f"Assistant provider API key not configured. Set {name}.")
	try:
		config.openai_timeout()
	except AssistantServiceError as exc:
		ready = False
		warnings.append(exc.message)
	return {
		"provider_kind": config.provider_kind(),
		"provider_ready": ready,
		"provider_warnings": warnings,
		"model": config.assistant_model(),
	}
