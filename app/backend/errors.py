from __future__ import annotations


class AssistantServiceError(Exception):
	def __init__(self, *, status_code: int, code: str, message: str):
		super().__init__(message)
		self.status_code = status_code
		self.code = code
		self.message = message


class ProviderError(AssistantServiceError):
	"""The assistants provider call itself failed (network, auth, rate limit)."""

	def __init__(self, message: str = "Assistant provider request failed.", *, status_code: int = 502, code: str = "assistant_provider_error"):
		super().__init__(status_code=status_code, code=code, message=message)


class ProviderTimeoutError(ProviderError):
	def __init__(self, message: str = "Assistant provider timed out."):
		super().__init__(message, status_code=504, code="assistant_provider_timeout")


class ProviderNotFoundError(ProviderError):
	def __init__(self, message: str = "Assistant provider resource not found."):
		super().__init__(message, status_code=404, code="assistant_not_found")


class RunFailedError(AssistantServiceError):
	"""A run reached a terminal status other than ``completed``."""

	def __init__(self, *, status: str, run_id: str):
		super().__init__(
			status_code=502,
			code="assistant_run_failed",
			message=f"Run failed with status: {status}",
		)
		self.status = status
		self.run_id = run_id


class RunTimeoutError(AssistantServiceError):
	def __init__(self, *, run_id: str, waited_s: float):
		super().__init__(
			status_code=504,
			code="assistant_run_timeout",
			message=f"Run {run_id} did not finish within {waited_s:.1f}s.",
		)
		self.run_id = run_id
		self.waited_s = waited_s
