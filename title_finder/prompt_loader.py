from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=None)
def load_prompt(prompts_dir: Path, name: str) -> str:
    """Purpose: Load a named instruction set (<name>.txt) as UTF-8 text without BOM.
    Inputs/Outputs: Inputs are the prompts directory and prompt name; output is text.
    Side Effects / State: Reads the filesystem once per (dir, name); result is cached.
    Dependencies: Uses Path.read_text/read_bytes; used by the agent and website scanner.
    Failure Modes: Missing files raise FileNotFoundError; UnicodeDecodeError triggers a
        tolerant decode that drops invalid bytes.
    If Removed: Interview, keyword, selection, and summary calls have no instructions.
    Testing Notes: Validate BOM stripping and that repeated loads hit the cache.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    prompt_path = prompts_dir / f"{name}.txt"
    try:
        text = prompt_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        text = prompt_path.read_bytes().decode("utf-8", errors="ignore")
    return text.lstrip("\ufeff").strip()
