from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ApiError(BaseModel):
	model_config = ConfigDict(extra="forbid")

	code: str
	message: str
	evidence: List[str] = Field(default_factory=list)


class ErrorEnvelope(BaseModel):
	model_config = ConfigDict(extra="allow")

	ok: bool = False
	generated_at: str
	request_id: Optional[str] = None
	error: ApiError


class _CamelRequest(BaseModel):
	model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)


class RunAssistantRequest(_CamelRequest):
	message: str = Field(..., min_length=1, description="The learner's chat message.")
	thread_id: Optional[str] = Field(default=None, alias="threadId")
	age: Optional[int] = Field(default=None, ge=0, le=120)
	language: str = Field(default="en", min_length=1)
	session_id: str = Field(..., min_length=1, alias="sessionId")


class ConversationMessage(BaseModel):
	model_config = ConfigDict(extra="ignore")

	type: str = Field(default="user", description="user | assistant")
	content: str = ""


class GenerateQuestionsRequest(_CamelRequest):
	message: List[ConversationMessage] = Field(default_factory=list, description="Chat transcript shown to the learner.")
	thread_id: str = Field(..., min_length=1, alias="threadId")
	age: Optional[int] = Field(default=None, ge=0, le=120)
	language: str = Field(..., min_length=1)


class GenerateRandomTopicQuestionsRequest(_CamelRequest):
	topic: str = Field(..., min_length=1)
	thread_id: str = Field(..., min_length=1, alias="threadId")
	age: Optional[int] = Field(default=None, ge=0, le=120)
	language: str = Field(..., min_length=1)
	session_id: Optional[str] = Field(default=None, alias="sessionId")


class GenerateSummaryRequest(_CamelRequest):
	message: str = Field(default="", description="Topic or last exchange to anchor the summary.")
	thread_id: str = Field(..., min_length=1, alias="threadId")
	age: Optional[int] = Field(default=None, ge=0, le=120)
	language: str = Field(..., min_length=1)
	session_id: Optional[str] = Field(default=None, alias="sessionId")


class CancelRunRequest(_CamelRequest):
	thread_id: Optional[str] = Field(default=None, alias="threadId")
	run_id: Optional[str] = Field(default=None, alias="runId")
	session_id: Optional[str] = Field(default=None, alias="sessionId")


class QuizQuestion(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	question: str = Field(..., min_length=1)
	options: List[str] = Field(..., min_length=2)
	correct_answer: int = Field(..., ge=0, alias="correctAnswer")
	explanation: str = ""

	@model_validator(mode="after")
	def _answer_in_range(self) -> "QuizQuestion":
		if self.correct_answer >= len(self.options):
			raise ValueError("correctAnswer must index into options.")
		return self


class SummaryPayload(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	title: str = Field(..., min_length=1)
	summary_explanation: str = Field(..., min_length=1, alias="summaryExplanation")


class RunAssistantResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	result: str
	run_id: str = Field(..., alias="runId")
	thread_id: str = Field(..., alias="threadId")
	diagram: Optional[str] = None


class QuizResponse(BaseModel):
	result: List[QuizQuestion] = Field(default_factory=list)


class TopicQuestionsResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	topic_questions: List[str] = Field(default_factory=list, alias="topicQuestions")
	thread_id: str = Field(..., alias="threadId")


class SummaryResponse(SummaryPayload):
	pass


class ThreadIdResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	thread_id: str = Field(..., alias="threadId")


class SuccessResponse(BaseModel):
	success: bool = True
	message: Optional[str] = None


class HealthResponse(BaseModel):
	ok: bool = True
	provider_kind: Literal["openai", "azure"]
	provider_ready: bool
	provider_warnings: List[str] = Field(default_factory=list)
	model: str
	active_sessions: int = 0
