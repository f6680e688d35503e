from __future__ import annotations

from fastapi import Request

from app.backend.services.assistant_service import AssistantRunCoordinator


def get_coordinator(request: Request) -> AssistantRunCoordinator:
	"""FastAPI dependency returning the coordinator built in ``create_app``."""
	return request.app.state.coordinator
