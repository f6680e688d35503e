from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.backend.deps import get_coordinator
from app.backend.errors import AssistantServiceError
from app.backend.logging_config import log_event
from app.backend.schemas import (
	GenerateQuestionsRequest,
	GenerateRandomTopicQuestionsRequest,
	GenerateSummaryRequest,
	QuizResponse,
	RunAssistantRequest,
	RunAssistantResponse,
	SummaryResponse,
	TopicQuestionsResponse,
)
from app.backend.services.assistant_service import AssistantRunCoordinator


router = APIRouter(prefix="/api", tags=["assistant"])


def _session_id_from_request(request: Request) -> Optional[str]:
	return getattr(request.state, "session_id", None)


def _service_error(exc: AssistantServiceError) -> HTTPException:
	return HTTPException(
		status_code=exc.status_code,
		detail={"code": exc.code, "message": exc.message},
	)


@router.post("/runAssistant", response_model=RunAssistantResponse)
def run_assistant(
	payload: RunAssistantRequest,
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	event = {
		"age": payload.age,
		"language": payload.language,
		"session_id": payload.session_id,
		"thread_id": payload.thread_id,
	}
	try:
		reply = coordinator.chat_reply(
			session_id=payload.session_id,
			message=payload.message,
			age=payload.age,
			language=payload.language,
		)
	except AssistantServiceError as exc:
		log_event("ChatEvent", status="failure", errcode=exc.code, **event)
		raise _service_error(exc) from exc
	log_event("ChatEvent", status="success", run_id=reply.run_id, **event)
	return RunAssistantResponse(
		result=reply.result,
		run_id=reply.run_id,
		thread_id=reply.thread_id,
		diagram=reply.diagram,
	)


@router.post("/generateQuestions", response_model=QuizResponse)
def generate_questions(
	request: Request,
	payload: GenerateQuestionsRequest,
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	session_id = _session_id_from_request(request)
	event = {"age": payload.age, "language": payload.language, "session_id": session_id, "thread_id": payload.thread_id}
	context = "\n\n".join(
		item.content for item in payload.message if item.type == "assistant" and item.content.strip()
	)
	try:
		parsed = coordinator.generate_quiz(
			thread_id=payload.thread_id,
			context=context,
			age=payload.age,
			language=payload.language,
			session_id=session_id,
		)
	except AssistantServiceError as exc:
		log_event("QuestionEvent", status="failure", errcode=exc.code, **event)
		raise _service_error(exc) from exc
	if parsed.ok:
		log_event("QuestionEvent", status="success", count=len(parsed.value), **event)
	else:
		log_event("QuestionEvent", status="failure", errcode="JSONParseError", detail=parsed.error, **event)
	return QuizResponse(result=parsed.value)


@router.post("/generateRandomTopicQuestions", response_model=TopicQuestionsResponse)
def generate_random_topic_questions(
	payload: GenerateRandomTopicQuestionsRequest,
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	event = {"age": payload.age, "language": payload.language, "session_id": payload.session_id, "thread_id": payload.thread_id}
	try:
		parsed, thread_id = coordinator.generate_topic_questions(
			topic=payload.topic,
			thread_id=payload.thread_id,
			age=payload.age,
			language=payload.language,
			session_id=payload.session_id,
		)
	except AssistantServiceError as exc:
		log_event("GenerateTopicsEvent", status="failure", errcode=exc.code, **event)
		raise _service_error(exc) from exc
	if parsed.ok:
		log_event("GenerateTopicsEvent", status="success", count=len(parsed.value), **event)
	else:
		log_event("GenerateTopicsEvent", status="failure", errcode="TopicParsingFailed", detail=parsed.error, **event)
	return TopicQuestionsResponse(topic_questions=parsed.value, thread_id=thread_id)


@router.post("/generateSummary", response_model=SummaryResponse)
def generate_summary(
	payload: GenerateSummaryRequest,
	coordinator: AssistantRunCoordinator = Depends(get_coordinator),
):
	event = {"age": payload.age, "language": payload.language, "session_id": payload.session_id, "thread_id": payload.thread_id}
	try:
		parsed = coordinator.generate_summary(
			thread_id=payload.thread_id,
			topic=payload.message,
			age=payload.age,
			language=payload.language,
			session_id=payload.session_id,
		)
	except AssistantServiceError as exc:
		log_event("SummaryEvent", status="failure", errcode=exc.code, **event)
		raise _service_error(exc) from exc
	if parsed.ok:
		log_event("SummaryEvent", status="success", **event)
	else:
		log_event("SummaryEvent", status="failure", errcode="SummaryParseFallback", detail=parsed.error, **event)
	return SummaryResponse.model_validate(parsed.value)
