from __future__ import annotations

import logging
from typing import Callable, TypeVar

from core.errors import MalformedOutputError
from .prompting import REPAIR_SYSTEM_PROMPT, build_repair_prompt


logger = logging.getLogger(__name__)

T = TypeVar("T")


def complete_json(
    llm,
    *,
    task_type: str,
    system_prompt: str,
    user_prompt: str,
    parse: Callable[[str], T],
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
) -> T:
    """Ask for JSON, parse it, and allow exactly one repair round-trip.

    The repair call runs at temperature 0. A second parse failure raises
    ``MalformedOutputError``; the caller decides whether that fails a single
    script or the whole batch.
    """
    raw = llm.chat_completion(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        task_type=task_type,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
    )
    try:
        return parse(raw)
    except MalformedOutputError as exc:
        logger.warning("%s JSON parse failed, attempting repair: %s", task_type, exc)
        first_error = exc

    repaired = llm.chat_completion(
        [
            {"role": "system", "content": REPAIR_SYSTEM_PROMPT},
            {"role": "user", "content": build_repair_prompt(raw, str(first_error))},
        ],
        task_type="json_repair",
        model=model,
        temperature=0,
        max_tokens=max_tokens,
        json_mode=True,
    )
    try:
        return parse(repaired)
    except MalformedOutputError as exc:
        raise MalformedOutputError(f"repair_failed: {exc}") from first_error
