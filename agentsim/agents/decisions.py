"""Action grammar for backend decision text.

The last non-empty line of a decision must read ``MOVE: <param>``,
``NOTHING: <param>`` or ``CONVERSE: <param>``. Every line above it is
reasoning and is only logged.
"""

import logging
import re

from ..errors import InvalidResponseFormat
from .state import DecisionResponse, ParsedDecision

logger = logging.getLogger(__name__)

ACTION_LINE = re.compile(r"^(MOVE|NOTHING|CONVERSE):\s*(.*)$", re.IGNORECASE)


def split_reasoning(text: str) -> tuple[list[str], str]:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return [], ""
    return lines[:-1], lines[-1]


def parse_decision_text(text: str) -> ParsedDecision:
    """Parse the final action line of ``text``.

    Raises ``InvalidResponseFormat`` when the text is empty or its last
    non-empty line does not follow the action grammar.
    """

    reasoning, final_line = split_reasoning(text)
    if not final_line:
        raise InvalidResponseFormat(text or "", "empty decision text")
    match = ACTION_LINE.match(final_line)
    if not match:
        raise InvalidResponseFormat(text, f"final line does not match action grammar: {final_line[:120]!r}")
    return ParsedDecision(
        action=match.group(1).lower(),
        param=match.group(2).strip(),
        reasoning=reasoning,
    )


def resolve_decision(response: DecisionResponse) -> ParsedDecision:
    """Validate ``response.text`` and merge it with the structured fields.

    A non-empty structured ``action`` wins together with its ``location``;
    otherwise both come from the final grammar line.
    """

    parsed = parse_decision_text(response.text)
    if parsed.reasoning:
        logger.debug("decision reasoning agent=%s reasoning=%s", response.agent_id, " | ".join(parsed.reasoning))
    action = (response.action or "").strip().lower()
    if not action:
        return parsed
    return ParsedDecision(action=action, param=(response.location or "").strip(), reasoning=parsed.reasoning)
