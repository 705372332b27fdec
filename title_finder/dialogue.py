"""Dialogue stage inference from caller-owned conversation history.

The service keeps no session state. Every request replays the history it is given
and decides which stage the conversation is in:

    REFINEMENT         some turn is a titles result payload (wins over everything).
    READY_TO_GENERATE  the latest assistant turn is a "ready" payload.
    INTERVIEW          anything else.

Turns whose content does not parse as a JSON object are plain conversation text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .utils import ParsedPayload, as_str, parse_payload

PAYLOAD_TYPE_QUESTION = "question"
PAYLOAD_TYPE_READY = "ready"
PAYLOAD_TYPE_TITLES = "titles"


class DialogueStage(str, Enum):
    INTERVIEW = "interview"
    READY_TO_GENERATE = "ready_to_generate"
    REFINEMENT = "refinement"


@dataclass(frozen=True)
class DialogueContext:
    """Audience details gathered by the interview so far."""
    company: str = ""
    seniority: str = ""
    industry: str = ""
    company_size: str = ""
    exclusions: str = ""

    @classmethod
    def from_payload(cls, value: Any) -> "DialogueContext":
        # Missing or non-string fields default to empty strings.
        if not isinstance(value, Mapping):
            return cls()
        return cls(
            company=_field_text(value.get("company")),
            seniority=_field_text(value.get("seniority")),
            industry=_field_text(value.get("industry")),
            company_size=_field_text(value.get("companySize")),
            exclusions=_field_text(value.get("exclusions")),
        )

    def to_payload(self) -> Dict[str, str]:
        return {
            "company": self.company,
            "seniority": self.seniority,
            "industry": self.industry,
            "companySize": self.company_size,
            "exclusions": self.exclusions,
        }

    def is_empty(self) -> bool:
        return not any(self.to_payload().values())

    def describe(self) -> str:
        """Render known fields as "Label: value" lines for prompts."""
        labels = {
            "company": "Company / product",
            "seniority": "Seniority",
            "industry": "Industry",
            "companySize": "Company size",
            "exclusions": "Exclusions",
        }
        return "\n".join(
            f"{labels[key]}: {value}" for key, value in self.to_payload().items() if value
        )


@dataclass(frozen=True)
class DialogueState:
    """Stage decision plus whatever the history tells us about the audience."""
    stage: DialogueStage
    context: DialogueContext = field(default_factory=DialogueContext)
    search_description: str = ""


def _field_text(value: Any) -> str:
    # Models sometimes return lists for multi-valued answers such as exclusions.
    if isinstance(value, list):
        return ", ".join(as_str(item) for item in value if as_str(item))
    return as_str(value)


def payload_type(payload: ParsedPayload) -> Optional[str]:
    """Purpose: Determine which result type a parsed history payload tags itself as.
    Inputs/Outputs: Input is a ParsedPayload; output is "question", "ready", "titles", or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses the PAYLOAD_TYPE_* constants.
    Failure Modes: Unparseable payloads return None.
    If Removed: classify_dialogue cannot tell interview, ready, and titles turns apart.
    Testing Notes: A payload with a "titles" object and no "type" counts as titles.
    """
    # Explicit type tags win; an untagged object with a titles mapping is a titles result.
    if not payload.ok:
        return None
    tag = as_str(payload.get("type")).lower()
    if tag in (PAYLOAD_TYPE_QUESTION, PAYLOAD_TYPE_READY, PAYLOAD_TYPE_TITLES):
        return tag
    if not tag and isinstance(payload.get("titles"), Mapping):
        return PAYLOAD_TYPE_TITLES
    return None


def _turn_role(turn: Mapping[str, Any]) -> str:
    return as_str(turn.get("role")).lower()


def _turn_content(turn: Mapping[str, Any]) -> str:
    content = turn.get("content")
    return content if isinstance(content, str) else ""


def classify_dialogue(message: str, history: Sequence[Mapping[str, Any]]) -> DialogueState:
    """Purpose: Decide the execution branch for a new message from history alone.
    Inputs/Outputs: Inputs are the latest user message and ordered history turns
        ({role, content}); output is a DialogueState.
    Side Effects / State: None; recomputed from scratch on every request.
    Dependencies: Uses parse_payload and payload_type.
    Failure Modes: Never raises; malformed turns are treated as plain text.
    If Removed: The agent cannot route between interview and title generation.
    Testing Notes: A titles turn anywhere forces REFINEMENT even after newer ready turns.
    """
    # Parse every turn once; the message itself never changes the stage.
    parsed: List[Tuple[str, ParsedPayload]] = [
        (_turn_role(turn), parse_payload(_turn_content(turn))) for turn in history if isinstance(turn, Mapping)
    ]

    last_assistant = next((payload for role, payload in reversed(parsed) if role == "assistant"), None)
    last_type = payload_type(last_assistant) if last_assistant is not None else None

    context = DialogueContext()
    if last_type in (PAYLOAD_TYPE_QUESTION, PAYLOAD_TYPE_READY):
        context = DialogueContext.from_payload(last_assistant.get("context"))

    if any(payload_type(payload) == PAYLOAD_TYPE_TITLES for _, payload in parsed):
        return DialogueState(stage=DialogueStage.REFINEMENT, context=context)

    if last_type == PAYLOAD_TYPE_READY:
        return DialogueState(
            stage=DialogueStage.READY_TO_GENERATE,
            context=context,
            search_description=as_str(last_assistant.get("searchDescription")),
        )

    return DialogueState(stage=DialogueStage.INTERVIEW, context=context)
