"""
AnswerSynthesizer — writes the final answer text when the governor answers.

The model receives the query, the accumulated evidence, the answer outline
from the terminal plan and the working memory.  If the call fails or comes
back empty, the answer degrades to a plain summary of what was gathered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from app.agent.reflection import format_working_memory
from app.agent.state import AnswerPlan, Task
from app.core.config import settings
from app.services import llm_service

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = (
    "I could not generate a reliable answer. "
    "Here is a summary of the evidence gathered so far:\n"
)

_SYSTEM_PROMPT = """\
You are an assistant writing the final answer to a user's query.
Use only the evidence and observations provided; do not invent facts.
If something could not be found, say so explicitly.
Format the answer clearly with short paragraphs or bullet points.
"""

_USER_PROMPT = """\
Query: {query}

Evidence:
{evidence}

Answer outline:
{outline}

Observations:
{observations}

Final answer:
"""


def fallback_answer(task: Task) -> str:
    summary = format_working_memory(task.working_memory)
    if task.evidence.strip():
        summary = f"{task.evidence.strip()}\n{summary}".strip()
    return FALLBACK_PREFIX + (summary or "(no evidence was gathered)")


class AnswerSynthesizer:
    def __init__(self, generate: Callable[..., str] | None = None, temperature: float | None = None) -> None:
        self._generate = generate or llm_service.generate_text
        self._temperature = settings.answer_temperature if temperature is None else temperature

    def compose(self, task: Task) -> str:
        outline = task.plan.content if isinstance(task.plan, AnswerPlan) else ""
        prompt = _USER_PROMPT.format(
            query=task.query,
            evidence=task.evidence or "(none)",
            outline=outline or "(none)",
            observations=format_working_memory(task.working_memory) or "(none)",
        )

        try:
            answer = self._generate(_SYSTEM_PROMPT, prompt, temperature=self._temperature).strip()
        except Exception as exc:
            logger.warning("Synthesizer: model call failed (%s), falling back to evidence summary", exc)
            task.last_error = task.last_error or str(exc)
            answer = ""

        if not answer:
            answer = fallback_answer(task)
        logger.info("Synthesizer: task %s answer length=%d chars", task.task_id, len(answer))
        return answer
