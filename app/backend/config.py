from __future__ import annotations

import os

from app.backend import constants
from app.backend.errors import AssistantServiceError


def _float_env(name: str, default: float, minimum: float = 0.0) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError:
		return default
	return value if value > minimum else default


def _int_env(name: str, default: int, minimum: int = 1) -> int:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = int(raw)
	except ValueError:
		return default
	return value if value >= minimum else default


def _flag_env(name: str, default: bool) -> bool:
	raw = os.getenv(name, "").strip().lower()
	if not raw:
		return default
	return raw not in {"0", "false", "off", "no"}


def chat_poll_interval() -> float:
	return _float_env("ASSISTANT_CHAT_POLL_INTERVAL_S", constants.DEFAULT_CHAT_POLL_INTERVAL_S)


def long_poll_interval() -> float:
	return _float_env("ASSISTANT_LONG_POLL_INTERVAL_S", constants.DEFAULT_LONG_POLL_INTERVAL_S)


def run_timeout() -> float:
	return _float_env("ASSISTANT_RUN_TIMEOUT_S", constants.DEFAULT_RUN_TIMEOUT_S)


def session_ttl_seconds() -> int:
	return _int_env("ASSISTANT_SESSION_TTL_S", constants.DEFAULT_SESSION_TTL_S, minimum=60)


def serialize_thread_runs() -> bool:
	return _flag_env("ASSISTANT_SERIALIZE_THREAD_RUNS", True)


def assistant_model() -> str:
	return os.getenv("ASSISTANT_MODEL", constants.DEFAULT_ASSISTANT_MODEL).strip() or constants.DEFAULT_ASSISTANT_MODEL


def assistant_id() -> str:
	return os.getenv("ASSISTANT_ID", "").strip()


def temperature() -> float:
	raw = os.getenv("ASSISTANT_TEMPERATURE", "").strip()
	if not raw:
		return constants.DEFAULT_TEMPERATURE
	try:
		value = float(raw)
	except ValueError:
		return constants.DEFAULT_TEMPERATURE
	return value if 0.0 <= value <= 2.0 else constants.DEFAULT_TEMPERATURE


def openai_timeout() -> float:
	raw = os.getenv("ASSISTANT_OPENAI_TIMEOUT_S", "").strip()
	if not raw:
		return constants.DEFAULT_OPENAI_TIMEOUT_S
	try:
		value = float(raw)
	except ValueError as exc:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message="ASSISTANT_OPENAI_TIMEOUT_S must be numeric.",
		) from exc
	if value <= 0:
		raise AssistantServiceError(
			status_code=503,
			code="assistant_provider_unconfigured",
			message="ASSISTANT_OPENAI_TIMEOUT_S must be greater than zero.",
		)
	return value


def azure_endpoint() -> str:
	return os.getenv("AZURE_OPENAI_ENDPOINT", "").strip()


def azure_api_version() -> str:
	return os.getenv("AZURE_OPENAI_API_VERSION", "").strip() or constants.DEFAULT_AZURE_API_VERSION


def provider_kind() -> str:
	return "azure" if azure_endpoint() else "openai"


def provider_api_key() -> str:
	if provider_kind() == "azure":
		return os.getenv("AZURE_OPENAI_KEY", "").strip()
	return os.getenv("OPENAI_API_KEY", "").strip()


def provider_ready() -> bool:
	return bool(provider_api_key())


def require_provider_api_key() -> str:
	key = provider_api_key()
	if key:
		return key
	name = "AZURE_OPENAI_KEY" if provider_kind() == "azure" else "OPENAI_API_KEY"
	raise AssistantServiceError(
		status_code=503,
		code="assistant_provider_unconfigured",
		message=f"Assistant provider API key not configured. Set {name}.",
	)
