"""Title finder agent pipeline orchestration.

Role:
    Runs one chat turn end to end: infers the dialogue stage from caller-owned history,
    then either asks the next interview question or produces a tiered title
    recommendation from the catalog. It owns the PipelineContext contract and every
    step-level decision used by the ADK runner.

Pipeline data contract (core fields passed across steps):
    - stage / dialogue: DialogueState inferred from history (interview, ready, refinement).
    - working_context: resolved audience description used for search and selection.
    - keywords: expansion terms returned by the keyword call (or the raw message).
    - candidates: ranked catalog titles from lexical retrieval (at most 500).
    - result: InterviewQuestion | InterviewReady | Recommendation handed back to the API.

Step contracts:
    Validate Request:
        Rejects blank messages before any reasoning call.
    Classify Dialogue:
        Sets stage/dialogue from history; resolves the generation context override.
    Interview (INTERVIEW only):
        One reasoning call; sets result to a question or a ready signal.
    Expand Keywords / Retrieve Candidates (generation only):
        One reasoning call for search terms, then local lexical retrieval. An empty
        candidate list sets the terminal no-match result.
    Select Titles (generation with candidates only):
        One reasoning call that groups candidates into tiers; parse failures fall back
        to positional tiers.
    Finalize:
        Logs the outcome for the turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .adk_runtime import AdkAgent, AdkStep
from .catalog import TitleCatalog
from .dialogue import (
    PAYLOAD_TYPE_READY,
    PAYLOAD_TYPE_TITLES,
    DialogueContext,
    DialogueStage,
    DialogueState,
    classify_dialogue,
    payload_type,
)
from .errors import MalformedRequestError, TitleFinderError
from .gemini_client import GeminiClient
from .models import (
    AudienceContext,
    InterviewQuestion,
    InterviewReady,
    Recommendation,
    TitleTiers,
)
from .prompt_loader import load_prompt
from .title_search import retrieve_candidates
from .utils import ParsedPayload, as_int, as_str, as_str_list, parse_payload, strip_code_fences

logger = logging.getLogger("title_finder.agent")

INTERVIEW_HISTORY_WINDOW = 10
FALLBACK_HIGH_COUNT = 15
FALLBACK_MEDIUM_COUNT = 15
FALLBACK_TOTAL_CAP = 30

DEFAULT_INTRO = "Here are my suggestions:"
NO_MATCH_MESSAGE = (
    "I couldn't find any matching titles. Try describing your audience differently - "
    "for example, mention the job function, seniority level, or industry."
)
NO_MATCH_REASONING = "No matches found for the given description."
PARSE_FAILURE_REASONING = "Could not parse structured response."

ChatOutcome = Union[InterviewQuestion, InterviewReady, Recommendation]
InterviewOutcome = Union[InterviewQuestion, InterviewReady]


@dataclass
class PipelineContext:
    """Mutable context passed through each pipeline step."""
    user_message: str
    chat_history: List[Dict[str, Any]]
    stage: DialogueStage = DialogueStage.INTERVIEW
    dialogue: DialogueState = field(default_factory=lambda: DialogueState(stage=DialogueStage.INTERVIEW))
    context_override: str = ""
    working_context: str = ""
    keywords: str = ""
    candidates: List[str] = field(default_factory=list)
    result: Optional[ChatOutcome] = None
    reasoning_calls: int = 0


class TitleFinderAgent:
    def __init__(
        self,
        gemini: GeminiClient,
        catalog: TitleCatalog,
        prompts_dir: Path,
        model_flash: Optional[str] = None,
        model_pro: Optional[str] = None,
    ) -> None:
        """Purpose: Initialize the agent pipeline runners and dependencies.
        Inputs/Outputs: Inputs are the reasoning client, the shared read-only catalog,
            the prompt directory, and model names; no return value.
        Side Effects / State: Constructs AdkAgent runners for full turns and generation.
        Dependencies: Uses AdkAgent/AdkStep and step methods on this class.
        Failure Modes: None at init; runtime errors occur within step functions.
        If Removed: The chat endpoint cannot construct the agent pipeline.
        Testing Notes: Instantiate with an AsyncMock reasoning client and a small catalog.
        """
        # Store dependencies and build the ADK step runners.
        self._gemini = gemini
        self._catalog = catalog
        self._prompts_dir = prompts_dir
        self._model_flash = model_flash
        self._model_pro = model_pro
        generation_steps = [
            AdkStep("expand_keywords", self._step_expand_keywords, skip_if=_is_interview),
            AdkStep("retrieve_candidates", self._step_retrieve_candidates, skip_if=_is_interview),
            AdkStep("select_titles", self._step_select_titles, skip_if=_has_result),
        ]
        self._agent = AdkAgent(
            steps=[
                AdkStep("validate_request", self._step_validate_request),
                AdkStep("classify_dialogue", self._step_classify_dialogue),
                AdkStep("interview", self._step_interview, skip_if=_is_not_interview),
                *generation_steps,
                AdkStep("finalize", self._step_finalize, always_run=True),
            ]
        )
        self._generation_agent = AdkAgent(steps=generation_steps)

    @property
    def catalog(self) -> TitleCatalog:
        return self._catalog

    async def handle_message(self, user_message: str, chat_history: Sequence[Mapping[str, Any]]) -> ChatOutcome:
        """Purpose: Run the full pipeline for one chat turn and return its result.
        Inputs/Outputs: Inputs are the new message and the full caller-owned history;
            output is an InterviewQuestion, InterviewReady, or Recommendation.
        Side Effects / State: None beyond logging; the agent keeps no conversation state.
        Dependencies: Uses AdkAgent.run and PipelineContext.
        Failure Modes: MalformedRequestError for blank messages (before any external
            call); ReasoningServiceError propagates from failed reasoning calls;
            TitleFinderError if the steps leave no result.
        If Removed: The chat endpoint cannot execute the interview/generation flow.
        Testing Notes: Drive each stage with crafted history and an AsyncMock client.
        """
        # Build a fresh context from the request and execute pipeline steps.
        context = PipelineContext(
            user_message=user_message or "",
            chat_history=[dict(turn) for turn in chat_history],
        )
        logger.info("question=%s history_turns=%d", context.user_message, len(context.chat_history))
        await self._agent.run(context)
        if context.result is None:
            raise TitleFinderError("pipeline finished without a result")
        return context.result

    async def interview(self, user_message: str, chat_history: Sequence[Mapping[str, Any]]) -> InterviewOutcome:
        """Purpose: Ask the next clarifying question or signal that generation can start.
        Inputs/Outputs: Inputs are the new message and history; output is an
            InterviewQuestion or InterviewReady.
        Side Effects / State: One reasoning call.
        Dependencies: Uses the interview prompt, GeminiClient.generate, and
            parse_interview_output.
        Failure Modes: Unparseable output becomes a question carrying the raw text;
            reasoning failures propagate.
        If Removed: The guided interview disappears and every turn generates titles.
        Testing Notes: Feed fenced JSON, prose-wrapped JSON, and plain text replies.
        """
        # Send the trailing window plus the new message under interview instructions.
        window = [
            {"role": str(turn.get("role", "")), "content": str(turn.get("content") or "")}
            for turn in list(chat_history)[-INTERVIEW_HISTORY_WINDOW:]
        ]
        window.append({"role": "user", "content": user_message})
        raw = await self._gemini.generate(
            load_prompt(self._prompts_dir, "interview"),
            window,
            model=self._model_flash,
            temperature=0.4,
            max_output_tokens=1024,
        )
        return parse_interview_output(raw)

    async def generate(
        self,
        user_message: str,
        chat_history: Sequence[Mapping[str, Any]],
        context_override: str = "",
        dialogue_context: Optional[DialogueContext] = None,
    ) -> Recommendation:
        """Purpose: Produce a tiered recommendation for the accumulated conversation.
        Inputs/Outputs: Inputs are the new message, history, an optional context
            override (the interview's search description), and known interview context;
            output is a Recommendation.
        Side Effects / State: Up to two sequential reasoning calls.
        Dependencies: Runs the expand/retrieve/select steps on a fresh PipelineContext.
        Failure Modes: No candidates returns the no-match Recommendation after a single
            call; reasoning failures propagate; TitleFinderError if no
            Recommendation was produced.
        If Removed: Callers cannot generate titles outside the chat pipeline.
        Testing Notes: Pass an override and confirm history content is not searched.
        """
        # Reuse the generation steps so the chat pipeline and direct calls agree.
        stage = DialogueStage.READY_TO_GENERATE if context_override.strip() else DialogueStage.REFINEMENT
        context = PipelineContext(
            user_message=user_message,
            chat_history=[dict(turn) for turn in chat_history],
            stage=stage,
            dialogue=DialogueState(stage=stage, context=dialogue_context or DialogueContext()),
            context_override=context_override,
        )
        await self._generation_agent.run(context)
        if not isinstance(context.result, Recommendation):
            raise TitleFinderError("generation finished without a recommendation")
        return context.result

    async def _step_validate_request(self, context: PipelineContext) -> None:
        # Reject blank input before any reasoning call is attempted.
        if not context.user_message.strip():
            raise MalformedRequestError("message required")

    async def _step_classify_dialogue(self, context: PipelineContext) -> None:
        """Purpose: Infer the dialogue stage and generation context from history.
        Inputs/Outputs: Input is PipelineContext; sets stage, dialogue, context_override.
        Side Effects / State: Logs the stage decision.
        Dependencies: Uses classify_dialogue.
        Failure Modes: None; malformed history turns are treated as plain text.
        If Removed: Every turn would be routed to the same branch.
        Testing Notes: Ready history sets the override; titles history forces refinement.
        """
        # Only a ready turn supplies an authoritative override; refinement replays history.
        state = classify_dialogue(context.user_message, context.chat_history)
        context.dialogue = state
        context.stage = state.stage
        if state.stage is DialogueStage.READY_TO_GENERATE:
            context.context_override = state.search_description
        logger.info("stage=%s override=%s", state.stage.value, bool(context.context_override))

    async def _step_interview(self, context: PipelineContext) -> None:
        context.result = await self.interview(context.user_message, context.chat_history)
        context.reasoning_calls += 1

    async def _step_expand_keywords(self, context: PipelineContext) -> None:
        """Purpose: Resolve the working context and ask for search keyword expansion.
        Inputs/Outputs: Input is PipelineContext; sets working_context and keywords.
        Side Effects / State: One reasoning call.
        Dependencies: Uses resolve_working_context and the keywords prompt.
        Failure Modes: Empty model output falls back to the raw user message;
            reasoning failures propagate.
        If Removed: Retrieval only sees the literal wording of the conversation.
        Testing Notes: Return "" from the client and confirm the message is used.
        """
        # Keywords are plain comma/whitespace text, not a structured payload.
        context.working_context = resolve_working_context(
            context.user_message, context.chat_history, context.context_override
        )
        raw = await self._gemini.generate(
            load_prompt(self._prompts_dir, "keywords"),
            [{"role": "user", "content": context.working_context}],
            model=self._model_flash,
            temperature=0.2,
            max_output_tokens=300,
        )
        context.reasoning_calls += 1
        context.keywords = strip_code_fences(raw) or context.user_message
        logger.debug("keywords=%s", context.keywords)

    async def _step_retrieve_candidates(self, context: PipelineContext) -> None:
        # An empty candidate list ends the turn with the no-match recommendation.
        context.candidates = retrieve_candidates(context.keywords, context.working_context, self._catalog.titles)
        logger.info("candidates=%d", len(context.candidates))
        if not context.candidates:
            context.result = build_no_match_recommendation()

    async def _step_select_titles(self, context: PipelineContext) -> None:
        """Purpose: Ask the model to group candidates into tiers and normalize its reply.
        Inputs/Outputs: Input is PipelineContext with candidates; sets result.
        Side Effects / State: One reasoning call.
        Dependencies: Uses build_selection_prompt, the title_selection prompt, and
            parse_selection_output.
        Failure Modes: Unparseable output falls back to positional tiers; reasoning
            failures propagate.
        If Removed: Candidates are never grouped and no recommendation is produced.
        Testing Notes: Return malformed text with 40 candidates and check 15/15/0 tiers.
        """
        # Use the full transcript so refinement requests see earlier recommendations.
        prompt = build_selection_prompt(
            context.user_message,
            context.chat_history,
            context.candidates,
            context.working_context,
            context.dialogue.context,
        )
        raw = await self._gemini.generate(
            load_prompt(self._prompts_dir, "title_selection"),
            [{"role": "user", "content": prompt}],
            model=self._model_pro,
            temperature=0.3,
            max_output_tokens=4096,
        )
        context.reasoning_calls += 1
        context.result = parse_selection_output(raw, context.candidates, self._catalog)

    async def _step_finalize(self, context: PipelineContext) -> None:
        result_type = context.result.type if context.result is not None else "none"
        logger.info(
            "stage=%s result=%s reasoning_calls=%d",
            context.stage.value,
            result_type,
            context.reasoning_calls,
        )


def _is_interview(context: PipelineContext) -> bool:
    return context.stage is DialogueStage.INTERVIEW


def _is_not_interview(context: PipelineContext) -> bool:
    return context.stage is not DialogueStage.INTERVIEW


def _has_result(context: PipelineContext) -> bool:
    return context.result is not None


def resolve_working_context(
    user_message: str,
    chat_history: Sequence[Mapping[str, Any]],
    context_override: str = "",
) -> str:
    """Purpose: Resolve the audience description that drives search and selection.
    Inputs/Outputs: Inputs are the new message, history, and an optional override;
        output is the working context string.
    Side Effects / State: None; pure function.
    Dependencies: None.
    Failure Modes: None; an empty history yields just the new message.
    If Removed: Generation cannot combine earlier answers with the new message.
    Testing Notes: A non-empty override is returned verbatim; otherwise user turns
        are joined in order with the new message last.
    """
    # A non-empty override is authoritative and used verbatim.
    if context_override and context_override.strip():
        return context_override
    parts = [
        str(turn.get("content") or "")
        for turn in chat_history
        if str(turn.get("role", "")).lower() == "user" and turn.get("content")
    ]
    parts.append(user_message)
    return " ".join(part for part in parts if part)


def parse_interview_output(raw: str) -> InterviewOutcome:
    """Purpose: Convert an interview reply into a question or ready result.
    Inputs/Outputs: Input is raw model text; output is InterviewQuestion or InterviewReady.
    Side Effects / State: Logs parse fallbacks.
    Dependencies: Uses parse_payload, payload_type, and DialogueContext.from_payload.
    Failure Modes: Never raises; unparseable text becomes a question at position 0.
    If Removed: Interview replies cannot be turned into API responses.
    Testing Notes: Missing fields default to empty strings and zeros.
    """
    # Parse the payload; anything that is not explicitly "ready" is a question.
    payload = parse_payload(raw)
    if not payload.ok:
        logger.warning("interview output unparseable: %s", payload.error)
        return InterviewQuestion(message=(raw or "").strip(), question_number=0, total_questions=0)
    audience = _audience_context(payload.get("context"))
    message = as_str(payload.get("message"))
    if payload_type(payload) == PAYLOAD_TYPE_READY:
        return InterviewReady(
            message=message,
            context=audience,
            search_description=as_str(payload.get("searchDescription")),
        )
    return InterviewQuestion(
        message=message,
        question_number=as_int(payload.get("questionNumber")),
        total_questions=as_int(payload.get("totalQuestions")),
        context=audience,
    )


def _audience_context(value: Any) -> AudienceContext:
    return AudienceContext(**DialogueContext.from_payload(value).to_payload())


def build_no_match_recommendation() -> Recommendation:
    return Recommendation(
        message=NO_MATCH_MESSAGE,
        titles=TitleTiers(),
        total_count=0,
        reasoning=NO_MATCH_REASONING,
    )


def _render_turn_content(content: str) -> str:
    # Earlier results are summarized so the model can refine them without raw JSON noise.
    payload = parse_payload(content)
    if not payload.ok:
        return content.strip()
    message = as_str(payload.get("message"))
    if payload_type(payload) != PAYLOAD_TYPE_TITLES:
        return message or content.strip()
    tiers = payload.get("titles")
    lines = [message] if message else []
    if isinstance(tiers, Mapping):
        for tier in ("high", "medium", "explore"):
            titles = as_str_list(tiers.get(tier))
            if titles:
                lines.append(f"[{tier}] " + "; ".join(titles))
    audience_name = as_str(payload.get("audienceName"))
    if audience_name:
        lines.append(f"Audience name: {audience_name}")
    return "\n".join(lines)


def render_transcript(chat_history: Sequence[Mapping[str, Any]]) -> str:
    """Render history as "User:/Assistant:" lines in order."""
    lines: List[str] = []
    for turn in chat_history:
        role = "Assistant" if str(turn.get("role", "")).lower() == "assistant" else "User"
        text = _render_turn_content(str(turn.get("content") or ""))
        if text:
            lines.append(f"{role}: {text}")
    return "\n".join(lines)


def build_selection_prompt(
    user_message: str,
    chat_history: Sequence[Mapping[str, Any]],
    candidates: Sequence[str],
    working_context: str,
    dialogue_context: Optional[DialogueContext] = None,
) -> str:
    """Purpose: Build the user prompt for the title selection call.
    Inputs/Outputs: Inputs are the message, history, candidates, working context, and
        known interview context; output is the prompt text.
    Side Effects / State: None; pure function.
    Dependencies: Uses render_transcript and DialogueContext.describe.
    Failure Modes: None.
    If Removed: The selection call has no transcript or candidate list.
    Testing Notes: Ensure the candidate count and every candidate line are present.
    """
    # Transcript first, then the request, then the numbered candidate block.
    sections = [
        "Conversation so far:\n" + (render_transcript(chat_history) or "(no earlier messages)"),
        f'Latest message: "{user_message}"',
        f'Target audience description: "{working_context}"',
    ]
    if dialogue_context is not None and not dialogue_context.is_empty():
        sections.append("Known audience details:\n" + dialogue_context.describe())
    sections.append(
        f"Here are {len(candidates)} candidate job titles from LinkedIn's database. "
        "Select and group the most relevant ones:\n\n" + "\n".join(candidates)
    )
    return "\n\n".join(sections)


def _catalog_tier(values: Any, catalog: TitleCatalog) -> List[str]:
    # Only exact catalog members survive; spelling is normalized to the catalog's.
    tier: List[str] = []
    for value in as_str_list(values):
        canonical = catalog.canonical(value)
        if canonical is None:
            logger.debug("dropping title not in catalog: %s", value)
            continue
        if canonical not in tier:
            tier.append(canonical)
    return tier


def build_fallback_recommendation(raw: str, candidates: Sequence[str]) -> Recommendation:
    """Positional tiers used when the selection reply cannot be parsed."""
    high = list(candidates[:FALLBACK_HIGH_COUNT])
    medium = list(candidates[FALLBACK_HIGH_COUNT : FALLBACK_HIGH_COUNT + FALLBACK_MEDIUM_COUNT])
    explore = list(candidates[FALLBACK_HIGH_COUNT + FALLBACK_MEDIUM_COUNT : FALLBACK_TOTAL_CAP])
    return Recommendation(
        message=(raw or "").strip(),
        titles=TitleTiers(high=high, medium=medium, explore=explore),
        total_count=min(len(candidates), FALLBACK_TOTAL_CAP),
        reasoning=PARSE_FAILURE_REASONING,
    )


def parse_selection_output(raw: str, candidates: Sequence[str], catalog: TitleCatalog) -> Recommendation:
    """Purpose: Normalize the title selection reply into a Recommendation.
    Inputs/Outputs: Inputs are raw model text, the candidate list, and the catalog;
        output is a Recommendation.
    Side Effects / State: Logs parse fallbacks.
    Dependencies: Uses parse_payload, _catalog_tier, and build_fallback_recommendation.
    Failure Modes: Never raises; unparseable text yields positional tiers.
    If Removed: Selection replies cannot be returned to the caller.
    Testing Notes: Absent tiers default to [], invented titles are dropped, and the
        total equals the sum of tier lengths.
    """
    # Unparseable output degrades to positional tiers over the ranked candidates.
    payload: ParsedPayload = parse_payload(raw)
    if not payload.ok:
        logger.warning("selection output unparseable (%s); using positional tiers", payload.error)
        return build_fallback_recommendation(raw, candidates)
    tiers = TitleTiers(
        high=_catalog_tier(payload.get("high"), catalog),
        medium=_catalog_tier(payload.get("medium"), catalog),
        explore=_catalog_tier(payload.get("explore"), catalog),
    )
    return Recommendation(
        message=as_str(payload.get("intro")) or DEFAULT_INTRO,
        audience_name=as_str(payload.get("audienceName")),
        titles=tiers,
        total_count=tiers.count(),
        reasoning=as_str(payload.get("reasoning")),
        tip=as_str(payload.get("tip")),
    )
