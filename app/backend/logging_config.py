from __future__ import annotations

import datetime
import logging
import os
from typing import Any

_LOGGING_CONFIGURED = False
_EVENT_LOGGER = logging.getLogger("app.backend.events")


class UTCFormatter(logging.Formatter):
	def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
		dt = datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
		if datefmt:
			return dt.strftime(datefmt)
		return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _level_from_env() -> int:
	name = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
	level = logging.getLevelName(name)
	return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
	"""Install a single stream handler on the root logger.

	Safe to call more than once; only the first call has an effect.
	"""
	global _LOGGING_CONFIGURED
	if _LOGGING_CONFIGURED:
		return
	handler = logging.StreamHandler()
	handler.setFormatter(
		UTCFormatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
	)
	root = logging.getLogger()
	root.addHandler(handler)
	root.setLevel(_level_from_env())
	_LOGGING_CONFIGURED = True


def log_event(name: str, **properties: Any) -> None:
	"""Emit a named business event (ChatEvent, SummaryEvent, ...) as one log record."""
	fields = " ".join(f"{key}={value}" for key, value in sorted(properties.items()) if value is not None)
	level = logging.WARNING if properties.get("status") == "failure" else logging.INFO
	_EVENT_LOGGER.log(level, "%s %s", name, fields, extra={"event_name": name, "event_properties": properties})
