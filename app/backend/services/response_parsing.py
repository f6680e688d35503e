"""Post-processing of assistant text: diagram extraction and forgiving JSON parsing.

Model output is untrusted. Every parser here returns a ``ParseResult`` and
never raises on malformed content; callers decide what the fallback means.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from pydantic import ValidationError

from app.backend import constants
from app.backend.schemas import QuizQuestion, SummaryPayload


logger = logging.getLogger(__name__)

T = TypeVar("T")

_DIAGRAM_BLOCK = re.compile(r"```mermaid\s*([\s\S]*?)```", re.MULTILINE)
_LEADING_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*")
_TRAILING_FENCE = re.compile(r"\s*```\s*$")

# LaTeX commands whose first letter collides with a JSON escape (\n, \r, \t).
_LATEX_NRT = (
	r"(?:n(?:u|abla|eq|e|eg|ot|otin|i|leq|geq|mid)"
	r"|r(?:ho|ightarrow|ight|angle|ceil|floor|m|brace)"
	r"|t(?:heta|imes|au|ext|extbf|extit|an|anh|o|op|ilde|frac|herefore|riangle|t))"
	r"(?![A-Za-z])"
)
_BACKSLASH = re.compile(
	r"(?P<keep>\\(?:[\\\"/]|u[0-9a-fA-F]{4}|[bfnrt](?![A-Za-z])|(?!" + _LATEX_NRT + r")[nrt]))"
	r"|\\"
)
_EMBEDDED_SUMMARY = re.compile(
	r"\{[\s\S]*?\"title\"\s*:\s*\"[\s\S]*?\"[\s\S]*?\"summaryExplanation\"\s*:\s*\"[\s\S]*?\"\s*\}"
)
_SENTENCE_SPLIT = re.compile(r"(.+?[.!?।])\s+(\S[\s\S]*)")


@dataclass(frozen=True)
class ParseResult(Generic[T]):
	ok: bool
	value: T
	error: Optional[str] = None


def extract_diagram(text: str) -> Optional[str]:
	match = _DIAGRAM_BLOCK.search(text or "")
	return match.group(1).strip() if match else None


def split_diagram(text: str) -> Tuple[str, Optional[str]]:
	"""Return the prose with the first mermaid block removed, and that block's code."""
	diagram = extract_diagram(text)
	if diagram is None:
		return text, None
	return _DIAGRAM_BLOCK.sub("", text, count=1).strip(), diagram


def strip_code_fences(raw: str) -> str:
	candidate = _LEADING_FENCE.sub("", raw or "", count=1)
	return _TRAILING_FENCE.sub("", candidate, count=1).strip()


def repair_backslashes(raw: str) -> str:
	"""Double every backslash that does not start a JSON escape sequence.

	The model writes LaTeX (``\\frac``, ``\\mu``) straight into JSON strings.
	A backslash followed by b/f/n/r/t counts as an escape only when it is not
	the start of a LaTeX command, so ``\\frac`` is preserved while ``\\n``
	before a space stays a newline.
	"""
	return _BACKSLASH.sub(lambda m: m.group("keep") or "\\\\", raw)


def _loads(raw: str) -> Any:
	parsed = json.loads(raw)
	depth = 0
	while isinstance(parsed, str) and depth < 3:
		parsed = json.loads(parsed)
		depth += 1
	return parsed


def parse_quiz_questions(raw: str) -> ParseResult[List[QuizQuestion]]:
	candidate = strip_code_fences(raw)
	start = candidate.find("[")
	end = candidate.rfind("]")
	if start == -1 or end <= start:
		return ParseResult(ok=False, value=[], error="no JSON array in response")
	try:
		items = _loads(repair_backslashes(candidate[start : end + 1]))
	except json.JSONDecodeError as exc:
		logger.warning("Quiz JSON parse error: %s", exc)
		return ParseResult(ok=False, value=[], error=f"invalid JSON: {exc.msg}")
	if not isinstance(items, list):
		return ParseResult(ok=False, value=[], error="quiz payload is not a list")

	questions: List[QuizQuestion] = []
	for index, item in enumerate(items):
		try:
			questions.append(QuizQuestion.model_validate(item))
		except ValidationError as exc:
			logger.warning("Dropping malformed quiz item %d: %s", index, exc.errors()[0].get("msg"))
	if items and not questions:
		return ParseResult(ok=False, value=[], error="no valid quiz questions")
	return ParseResult(ok=True, value=questions)


def _question_list(payload: Any) -> Optional[List[str]]:
	if isinstance(payload, dict):
		if isinstance(payload.get("topicQuestions"), list):
			payload = payload["topicQuestions"]
		else:
			lists = [value for value in payload.values() if isinstance(value, list)]
			if len(lists) != 1:
				return None
			payload = lists[0]
	if not isinstance(payload, list):
		return None
	return [" ".join(item.split()) for item in payload if isinstance(item, str) and item.strip()]


def parse_topic_questions(raw: str) -> ParseResult[List[str]]:
	candidate = repair_backslashes(strip_code_fences(raw))
	try:
		payload = _loads(candidate)
	except json.JSONDecodeError as exc:
		logger.warning("Topic questions JSON parse error: %s", exc)
		return ParseResult(ok=False, value=[], error=f"invalid JSON: {exc.msg}")
	questions = _question_list(payload)
	if questions is None:
		return ParseResult(ok=False, value=[], error="no question array in response")
	return ParseResult(ok=True, value=questions)


def _summary_from(payload: Any) -> Optional[Dict[str, str]]:
	if isinstance(payload, dict):
		title = payload.get("title")
		if isinstance(title, str) and '"summaryExplanation"' in title:
			try:
				payload = _loads(title)
			except json.JSONDecodeError:
				return None
	try:
		summary = SummaryPayload.model_validate(payload)
	except ValidationError:
		return None
	return {"title": summary.title, "summaryExplanation": summary.summary_explanation}


def split_title_and_body(text: str) -> Dict[str, str]:
	"""Heuristic fallback: first line is the title, the remainder is the body."""
	stripped = (text or "").strip()
	if not stripped:
		return {
			"title": constants.SUMMARY_ERROR_TITLE,
			"summaryExplanation": constants.SUMMARY_ERROR_TEXT,
		}
	first, _, rest = stripped.partition("\n")
	title = first.strip()
	body = rest.strip()
	if not body:
		match = _SENTENCE_SPLIT.match(title)
		if match:
			title, body = match.group(1).strip(), match.group(2).strip()
		else:
			body = title
			words = title.split()
			if len(words) > constants.SUMMARY_TITLE_WORDS:
				title = " ".join(words[: constants.SUMMARY_TITLE_WORDS]) + "..."
	return {"title": title, "summaryExplanation": body}


def parse_summary(raw: str) -> ParseResult[Dict[str, str]]:
	candidate = repair_backslashes(strip_code_fences(raw))
	try:
		summary = _summary_from(_loads(candidate))
	except json.JSONDecodeError:
		summary = None
	if summary is not None:
		return ParseResult(ok=True, value=summary)

	match = _EMBEDDED_SUMMARY.search(candidate)
	if match:
		try:
			summary = _summary_from(_loads(match.group(0)))
		except json.JSONDecodeError:
			summary = None
		if summary is not None:
			return ParseResult(ok=True, value=summary)

	logger.warning("Summary was not valid JSON; falling back to text split")
	return ParseResult(ok=False, value=split_title_and_body(raw), error="summary is not valid JSON")
