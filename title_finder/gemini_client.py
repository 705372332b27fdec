from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import ReasoningServiceError

logger = logging.getLogger("title_finder.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": HarmBlockThreshold.BLOCK_NONE,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": HarmBlockThreshold.BLOCK_NONE,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": HarmBlockThreshold.BLOCK_NONE,
    },
    {
        "category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": HarmBlockThreshold.BLOCK_NONE,
    },
]

ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


class GeminiClient:
    """Thin async wrapper around the Gemini SDK with model caching and a hard timeout."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures SDK global API key and caches model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Interview, keyword, and selection calls cannot execute.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Configure API key and remember defaults; models are built lazily per instruction set.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._timeout = settings.llm_timeout
        self._default_model = _normalize_model_name(settings.gemini_model_flash)
        if not self._default_model:
            raise ValueError("Gemini model name is required")
        self._models: Dict[Tuple[str, str], genai.GenerativeModel] = {}

    def _get_model(self, model_name: str, system_instruction: str) -> genai.GenerativeModel:
        # System instructions are bound at model construction time in the SDK.
        key = (model_name, system_instruction)
        if key not in self._models:
            self._models[key] = genai.GenerativeModel(
                model_name,
                system_instruction=system_instruction or None,
            )
        return self._models[key]

    async def generate(
        self,
        system_instruction: str,
        messages: Sequence[Mapping[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
    ) -> str:
        """Purpose: Generate a reply for role-tagged messages under a system instruction.
        Inputs/Outputs: Inputs are the instruction text, {role, content} messages, and
            optional model/config; returns the generated text (possibly empty).
        Side Effects / State: May add a model to the internal cache; one network call.
        Dependencies: Uses GenerativeModel.generate_content_async and build_contents.
        Failure Modes: Raises ReasoningServiceError on timeout or any SDK failure.
            Blocked or empty candidates return "".
        If Removed: The agent pipeline cannot reach the reasoning service.
        Testing Notes: Patch the model with an AsyncMock and check role mapping.
        """
        # Resolve model, build contents, and bound the call with the configured timeout.
        model_name = _normalize_model_name(model) if model else self._default_model
        contents = build_contents(messages)
        gen_model = self._get_model(model_name, system_instruction)
        try:
            response = await asyncio.wait_for(
                gen_model.generate_content_async(
                    contents,
                    generation_config={
                        "temperature": temperature,
                        "max_output_tokens": max_output_tokens,
                    },
                    safety_settings=DEFAULT_SAFETY_SETTINGS,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("model=%s timed out after %.1fs", model_name, self._timeout)
            raise ReasoningServiceError(f"Gemini call timed out after {self._timeout}s") from exc
        except Exception as exc:
            logger.warning("model=%s call failed: %s", model_name, exc)
            raise ReasoningServiceError(f"Gemini call failed: {exc}") from exc
        return _response_text(response)


def build_contents(messages: Sequence[Mapping[str, str]]) -> List[dict]:
    """Purpose: Convert {role, content} chat turns into Gemini content entries.
    Inputs/Outputs: Input is a sequence of message dicts; output is a list of
        {"role", "parts"} dicts.
    Side Effects / State: None.
    Dependencies: Uses ROLE_MAP.
    Failure Modes: Unknown roles are sent as "user"; empty contents are skipped.
    If Removed: Assistant turns would be sent with a role Gemini rejects.
    Testing Notes: Ensure "assistant" becomes "model", empty turns are dropped, and
        consecutive turns with the same role share one entry.
    """
    # Map roles; consecutive same-role turns become extra parts so roles alternate.
    contents: List[dict] = []
    for message in messages:
        text = str(message.get("content") or "")
        if not text.strip():
            continue
        role = ROLE_MAP.get(str(message.get("role") or "").lower(), "user")
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": text})
            continue
        contents.append({"role": role, "parts": [{"text": text}]})
    return contents


def _response_text(response: object) -> str:
    # response.text raises ValueError when the candidate was blocked or has no parts.
    try:
        text: Optional[str] = getattr(response, "text", None)
    except ValueError:
        return ""
    return (text or "").strip()


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
