from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.backend.deps import get_coordinator
from app.backend.errors import AssistantServiceError
from app.backend.schemas import CancelRunRequest, SuccessResponse, ThreadIdResponse
from app.backend.services.assistant_service import AssistantRunCoordinator


router = APIRouter(prefix="/api", tags=["threads"])


def _service_error(exc: AssistantServiceError) -> HTTPException:
	return HTTPException(
		status_code=exc.status_code,
		detail={"code": exc.code, "message": exc.message},
	)


@router.get("/threadId", response_model=ThreadIdResponse)
def thread_id(
	session_id: str = Query(..., alias="sessionId", min_length=1),
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	try:
		value = coordinator.registry.get_or_create_thread(session_id.strip())
	except AssistantServiceError as exc:
		raise _service_error(exc) from exc
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return ThreadIdResponse(thread_id=value)


@router.delete("/deleteThread/{thread_id}", response_model=SuccessResponse)
def delete_thread(
	thread_id: str,
	session_id: Optional[str] = Query(default=None, alias="sessionId"),
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	try:
		deleted = coordinator.delete_thread(thread_id, session_id=session_id)
	except AssistantServiceError as exc:
		raise _service_error(exc) from exc
	return SuccessResponse(success=True, message=None if deleted else "Thread already deleted")


@router.post("/cancelAssistantRun", response_model=SuccessResponse)
def cancel_assistant_run(
	payload: CancelRunRequest,
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	try:
		message = coordinator.cancel_run(
			thread_id=payload.thread_id,
			run_id=payload.run_id,
			session_id=payload.session_id,
		)
	except AssistantServiceError as exc:
		raise _service_error(exc) from exc
	return SuccessResponse(success=True, message=message)
