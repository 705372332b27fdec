from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent
PROJECT_DIR = BASE_DIR.parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, catalog/frontend paths, and runtime limits."""
    gemini_api_key: str
    gemini_model_flash: str
    gemini_model_pro: str
    titles_path: Path
    frontend_dir: Path
    prompts_dir: Path
    llm_timeout: float
    fetch_timeout: float
    rate_limit_max: int
    rate_limit_window: float
    host: str
    port: int
    log_level: str


def _resolve_path(value: Optional[str], default: Path) -> Path:
    # Relative overrides are taken from the project root, not the cwd.
    if not value:
        return default
    path = Path(value)
    if not path.is_absolute():
        path = PROJECT_DIR / path
    return path.resolve()


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv and PROJECT_DIR/BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values (timeouts, limits, PORT) raise ValueError.
    If Removed: App cannot configure models, catalog, or limits and fails at startup.
    Testing Notes: Verify defaults and overrides via monkeypatched environment variables.
    """
    # Resolve catalog, frontend, and prompt paths, then build Settings.
    titles_path = _resolve_path(os.getenv("TITLES_PATH"), (PROJECT_DIR / "data" / "job-titles.csv").resolve())
    frontend_dir = _resolve_path(os.getenv("FRONTEND_DIR"), (PROJECT_DIR / "frontend").resolve())
    prompts_dir = _resolve_path(os.getenv("PROMPTS_DIR"), (BASE_DIR / "prompts").resolve())

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model_flash=os.getenv("GEMINI_MODEL_FLASH")
        or os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_model_pro=os.getenv("GEMINI_MODEL_PRO")
        or os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
        titles_path=titles_path,
        frontend_dir=frontend_dir,
        prompts_dir=prompts_dir,
        llm_timeout=float(os.getenv("LLM_TIMEOUT", "30")),
        fetch_timeout=float(os.getenv("FETCH_TIMEOUT", "10")),
        rate_limit_max=int(os.getenv("RATE_LIMIT_MAX", "10")),
        rate_limit_window=float(os.getenv("RATE_LIMIT_WINDOW", "60")),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
