from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from app.backend import constants


_LATEX_RULES = """
Math and LaTeX:
- Inline math uses single dollar signs $...$, block math uses $$...$$. Never wrap formulas in parentheses.
- Inside JSON strings every LaTeX backslash must be doubled: \\frac{3}{4} is written as \\\\frac{3}{4}, $T_{\\mu\\nu}$ as $T_{\\\\mu\\\\nu}$.
- Write mixed fractions without spaces, e.g. $3\\\\frac{1}{4}$.
""".strip()


def language_name(language: str) -> str:
	return constants.LANGUAGE_NAMES.get(language, language)


def age_group(age: Optional[int]) -> str:
	if age is None:
		return "9 through 12"
	for low, high in constants.AGE_GROUPS:
		if low <= age <= high:
			return f"{low} through {high}"
	low, high = constants.AGE_GROUPS[0] if age < constants.AGE_GROUPS[0][0] else constants.AGE_GROUPS[-1]
	return f"{low} through {high}"


def _age_text(age: Optional[int]) -> str:
	return str(age) if age is not None else "unspecified"


def chat_instructions(age: Optional[int], language: str) -> str:
	lang = language_name(language)
	return f"""
You are a STEM tutor for children. Tailor every answer to a learner aged {_age_text(age)} (age group {age_group(age)}) and answer in {lang} only.
The three age groups are 5 through 8, 9 through 12 and 13 through 16; if no age is given, answer for 9 through 12.
For every response:
- Include a Mermaid diagram only when it helps explain the concept to this age group. Put it in a markdown code block labelled "mermaid".
- Define every node before it is used, quote every label, write labels in {lang}, and style nodes with classDef/class using pastel colours, one class assignment per line. Emojis are welcome.
- Keep diagrams simple for younger learners; allow more detail for older ones. Never use ASCII art.
- After the diagram, explain the concept in one or two fun, age-appropriate sentences using correct scientific vocabulary.
- For ages 13 through 16, include equations in LaTeX ($$ ... $$) when relevant.
- Finish with age-appropriate follow-up questions, more open-ended for older learners.
If the topic is not related to science, technology, engineering or math, say kindly that it is outside STEM and invite a STEM question instead.
""".strip()


def quiz_instructions(age: Optional[int], language: str, context: str) -> str:
	lang = language_name(language)
	return f"""
Age group: {_age_text(age)} years old. Language: {lang}.
Context:
{context}

Create exactly 5 objective, fact-based multiple-choice questions strictly about the context above.
Do not repeat questions the tutor already asked in the context. Use {lang} in its native script, suited to a {_age_text(age)}-year-old.
Add a fun fact or short clarification to each explanation.
{_LATEX_RULES}
Output a pure JSON array of 5 objects, with no markdown fences and no extra text. Each object has:
"question": string, "options": array of strings (usually 4), "correctAnswer": 0-based integer index into options, "explanation": string.
""".strip()


def summary_instructions(topic: str, age: Optional[int], language: str, today: Optional[date] = None) -> str:
	lang = language_name(language)
	stamp = (today or date.today()).isoformat()
	return f"""
Summarise the whole conversation relating to: {topic or "the lesson so far"}.
The learner is {_age_text(age)} years old and prefers {lang}.
Return raw, minified JSON with exactly two keys and nothing else:
{{"title": "<main topic in {lang}> - {stamp}", "summaryExplanation": "..."}}
- The title names the main topic(s) in the native script of {lang}, e.g. "Photosynthesis - {stamp}".
- summaryExplanation covers every key concept of the conversation in at most 5 sentences, written for a {_age_text(age)}-year-old. It may use Markdown, LaTeX and, only when it really helps, one ```mermaid block.
- No follow-up questions, no code fences around the JSON, no stringified JSON.
{_LATEX_RULES}
""".strip()


def topic_instructions(topic: str, age: Optional[int], language: str) -> str:
	lang = language_name(language)
	return f"""
Generate three unique, single-line STEM questions strictly about {topic} for a learner in the age group {age_group(age)}.
Vary the subtopics and wording every time, even for the same input.
Respond ONLY in {lang}, in its native script.
For ages 13 through 16 use mathematical or chemical equations in LaTeX where relevant.
{_LATEX_RULES}
Respond with JSON only, no markdown, in exactly this shape:
{{"topicQuestions": ["...", "...", "..."]}}
""".strip()


def run_metadata(age: Optional[int], language: str, *, strict_context: bool = False) -> Dict[str, str]:
	metadata = {
		"age_optimization": _age_text(age),
		"language_constraints": f"{language}-only",
	}
	if strict_context:
		metadata["strict_context"] = "enabled"
	return metadata
