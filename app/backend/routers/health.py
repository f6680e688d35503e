from __future__ import annotations

from fastapi import APIRouter, Depends

from app.backend.adapters.assistants_adapter import provider_status
from app.backend.deps import get_coordinator
from app.backend.schemas import HealthResponse
from app.backend.services.assistant_service import AssistantRunCoordinator


router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(coordinator: AssistantRunCoordinator = Depends(get_coordinator)):
	status = provider_status()
	return HealthResponse(
		ok=bool(status["provider_ready"]),
		provider_kind=status["provider_kind"],
		provider_ready=status["provider_ready"],
		provider_warnings=status["provider_warnings"],
		model=status["model"],
		active_sessions=len(coordinator.registry),
	)
