"""Spoken reminder phrasing through litellm.

The model is only ever asked for one sentence. Whatever it returns is cut
down to the first sentence of the first non-empty line, unquoted and capped
at ``MAX_PHRASE_WORDS`` words, so a chatty reply still reads as a reminder.
"""

from __future__ import annotations

import logging
import re

import litellm

from home_patterns.prompts import REMINDER_PHRASE_PROMPT, REMINDER_PHRASE_SYSTEM

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

MAX_PHRASE_WORDS = 20
MAX_PHRASE_TOKENS = 60

_SENTENCE_END = re.compile(r"(?<=[.!?])\s")
_QUOTES = "\"'`“”‘’"


def clean_phrase(text: str | None) -> str:
    """Reduce a model reply to one short spoken sentence. Empty when nothing usable."""
    if not text:
        return ""
    line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    line = line.strip(_QUOTES).strip()
    sentence = _SENTENCE_END.split(line, maxsplit=1)[0].strip()
    words = sentence.split()
    if len(words) > MAX_PHRASE_WORDS:
        sentence = " ".join(words[:MAX_PHRASE_WORDS]).rstrip(",;:") + "..."
    return sentence


def build_phrase_messages(action: str, execution_action: str, occurrence: str | None) -> list[dict[str, str]]:
    prompt = REMINDER_PHRASE_PROMPT.format(
        action=action.replace("_", " ").strip(),
        execution_action=execution_action,
        occurrence=occurrence or "unknown",
    )
    return [
        {"role": "system", "content": REMINDER_PHRASE_SYSTEM},
        {"role": "user", "content": prompt},
    ]


async def phrase_reminder(
    action: str,
    execution_action: str,
    occurrence: str | None,
    model: str,
    temperature: float,
    max_retries: int = 3,
) -> str:
    """Ask the model for a reminder sentence. Raises once retries are exhausted."""
    messages = build_phrase_messages(action, execution_action, occurrence)
    for attempt in range(max_retries):
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=MAX_PHRASE_TOKENS,
            )
            return clean_phrase(response.choices[0].message.content)
        except Exception:
            if attempt == max_retries - 1:
                raise
            logger.warning("Phrasing %s failed (attempt %d/%d), retrying...",
                           action, attempt + 1, max_retries)
    return ""
