import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*[ \t]*\n?")


@dataclass(frozen=True)
class ParsedPayload:
    """Outcome of parsing model output: a dict on success or an error on failure."""
    raw: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None

    def get(self, key: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(key, default)


def strip_code_fences(text: str) -> str:
    """Purpose: Remove markdown code-fence markers (``` and ```json) from model output.
    Inputs/Outputs: Input is raw text; output is the text without fence markers, trimmed.
    Side Effects / State: None; pure function.
    Dependencies: Uses CODE_FENCE_RE; called by parse_payload.
    Failure Modes: Returns an empty string for falsy input.
    If Removed: Fenced JSON answers from the model fail to parse and fall back.
    Testing Notes: Wrap a JSON object in ```json fences and ensure the fences are gone.
    """
    # Drop every fence marker, keeping the fenced body in place.
    if not text:
        return ""
    return CODE_FENCE_RE.sub("", text).strip()


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the first balanced JSON object block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is the JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by parse_payload.
    Failure Modes: Returns None if no opening brace exists or braces never balance.
    If Removed: Model outputs wrapped in commentary cannot be parsed.
    Testing Notes: Provide strings with prose before/after JSON and braces inside strings.
    """
    # Walk from the first opening brace, tracking depth outside string literals.
    if not text:
        return None
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_payload(text: str) -> ParsedPayload:
    """Purpose: Parse a structured JSON object out of free-form model output.
    Inputs/Outputs: Input is raw text; output is a ParsedPayload with data or error set.
    Side Effects / State: None; pure function.
    Dependencies: Uses strip_code_fences, extract_json_block, and json.loads.
    Failure Modes: Never raises; missing, malformed, or non-object JSON sets error.
    If Removed: Interview, history classification, and title selection lose their
        shared parse-or-fallback boundary and crash on malformed output.
    Testing Notes: Cover bare JSON, fenced JSON, JSON inside prose, lists, and plain text.
    """
    # Try the whole de-fenced text first, then the first balanced object inside it.
    raw = text or ""
    cleaned = strip_code_fences(raw)
    if not cleaned:
        return ParsedPayload(raw=raw, error="empty response")
    candidates = [cleaned]
    block = extract_json_block(cleaned)
    if block and block != cleaned:
        candidates.append(block)
    error = "no JSON object found"
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as exc:
            error = f"invalid JSON: {exc.msg}"
            continue
        if isinstance(data, dict):
            return ParsedPayload(raw=raw, data=data)
        error = f"expected a JSON object, got {type(data).__name__}"
    return ParsedPayload(raw=raw, error=error)


def as_str(value: Any, default: str = "") -> str:
    # Strings pass through trimmed; everything else becomes the default.
    if isinstance(value, str):
        return value.strip()
    return default


def as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def as_str_list(value: Any) -> List[str]:
    """Coerce a payload field into a list of non-empty strings; non-lists become []."""
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]
