from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .agent_pipeline import TitleFinderAgent
from .catalog import TitleCatalog
from .config import PROJECT_DIR, Settings, load_settings
from .errors import MalformedRequestError, ReasoningServiceError, WebsiteFetchError
from .gemini_client import GeminiClient
from .models import (
    ChatRequest,
    ChatResult,
    ErrorResponse,
    WebsiteScanRequest,
    WebsiteScanResponse,
)
from .rate_limiter import SlidingWindowRateLimiter
from .website_scanner import WebsiteScanner

ENV_PATH = PROJECT_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("title_finder").setLevel(log_level)
logger = logging.getLogger("title_finder.app")

RATE_LIMIT_ERROR = "Too many requests. Please wait a minute."
MESSAGE_REQUIRED_ERROR = "message required"
GENERIC_ERROR = "Something went wrong. Try again."


def client_key(request: Request) -> str:
    """Purpose: Identify the calling client for rate limiting.
    Inputs/Outputs: Input is the incoming Request; output is a client key string.
    Side Effects / State: None.
    Dependencies: Reads X-Forwarded-For, X-Real-IP, and the peer address.
    Failure Modes: Falls back to "unknown" when nothing identifies the client.
    If Removed: All clients behind a proxy share one rate-limit bucket.
    Testing Notes: The first X-Forwarded-For hop wins over X-Real-IP.
    """
    # Prefer proxy headers, then the socket peer.
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    gemini: Optional[GeminiClient] = None,
    catalog: Optional[TitleCatalog] = None,
) -> FastAPI:
    """Purpose: Build the FastAPI application with its collaborators wired in.
    Inputs/Outputs: Optional settings, reasoning client, and catalog (built from the
        environment when omitted); returns a FastAPI instance.
    Side Effects / State: Loads the catalog once and configures the Gemini SDK.
    Dependencies: Uses load_settings, TitleCatalog, GeminiClient, TitleFinderAgent,
        WebsiteScanner, and SlidingWindowRateLimiter.
    Failure Modes: Missing catalog raises CatalogError; missing API key raises ValueError.
    If Removed: The service cannot be started or tested over HTTP.
    Testing Notes: Pass a fake client and a small catalog, then use TestClient.
    """
    # Resolve collaborators, then register routes.
    settings = settings or load_settings()
    catalog = catalog if catalog is not None else TitleCatalog.from_file(settings.titles_path)
    gemini = gemini or GeminiClient(settings)

    app = FastAPI(title="LinkedIn Title Finder")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.settings = settings
    app.state.agent = TitleFinderAgent(
        gemini=gemini,
        catalog=catalog,
        prompts_dir=settings.prompts_dir,
        model_flash=settings.gemini_model_flash,
        model_pro=settings.gemini_model_pro,
    )
    app.state.scanner = WebsiteScanner(
        gemini=gemini,
        prompts_dir=settings.prompts_dir,
        fetch_timeout=settings.fetch_timeout,
        model=settings.gemini_model_flash,
    )
    app.state.rate_limiter = SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window,
    )

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.post("/api/chat", response_model=ChatResult)
    async def chat(payload: ChatRequest, request: Request):
        """Purpose: Handle one chat turn and run the title finder pipeline.
        Inputs/Outputs: Input is ChatRequest {message, history}; output is a question,
            ready, or titles result, or an {"error"} body.
        Side Effects / State: Records a hit in the rate limiter.
        Dependencies: Uses TitleFinderAgent.handle_message and the rate limiter.
        Failure Modes: 429 when rate limited, 400 for a blank message, 500 when the
            reasoning service fails.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Send a sample message with a fake client and verify the schema.
        """
        # Throttle first, then validate, then run the pipeline.
        if not app.state.rate_limiter.allow(client_key(request)):
            return _error(RATE_LIMIT_ERROR, 429)
        if not payload.message.strip():
            return _error(MESSAGE_REQUIRED_ERROR, 400)
        history = [turn.model_dump() for turn in payload.history]
        try:
            return await app.state.agent.handle_message(payload.message, history)
        except MalformedRequestError:
            return _error(MESSAGE_REQUIRED_ERROR, 400)
        except ReasoningServiceError as exc:
            logger.error("Chat error: %s", exc)
            return _error(GENERIC_ERROR, 500)
        except Exception:
            logger.exception("Chat error")
            return _error(GENERIC_ERROR, 500)

    @app.post("/api/scan-website", response_model=WebsiteScanResponse)
    async def scan_website(payload: WebsiteScanRequest, request: Request):
        """Fetch and summarize a company website; the summary is fed back into chat."""
        if not app.state.rate_limiter.allow(client_key(request)):
            return _error(RATE_LIMIT_ERROR, 429)
        try:
            summary = await app.state.scanner.scan(payload.url)
        except ValueError as exc:
            return _error(str(exc), 400)
        except WebsiteFetchError as exc:
            logger.warning("Website scan failed: %s", exc)
            return _error("Could not read that website. Check the address and try again.", 502)
        except ReasoningServiceError as exc:
            logger.error("Website summary error: %s", exc)
            return _error(GENERIC_ERROR, 500)
        return WebsiteScanResponse(url=payload.url, summary=summary)

    _mount_frontend(app, settings.frontend_dir)
    return app


def _mount_frontend(app: FastAPI, frontend_dir: Path) -> None:
    """Purpose: Serve the static frontend with an index fallback for client routes.
    Inputs/Outputs: Inputs are the app and frontend directory; no return value.
    Side Effects / State: Registers /static, "/", and a catch-all GET route.
    Dependencies: Uses StaticFiles and FileResponse.
    Failure Modes: A missing directory only logs a warning; the API still works.
    If Removed: The browser UI cannot load from the service.
    Testing Notes: Unknown paths return index.html; "../" escapes return 404.
    """
    # Registered last so the catch-all never shadows API routes.
    if not frontend_dir.is_dir():
        logger.warning("Frontend directory not found: %s", frontend_dir)
        return
    root = frontend_dir.resolve()
    index_path = root / "index.html"
    app.mount("/static", StaticFiles(directory=root), name="static")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        if not index_path.exists():
            return PlainTextResponse("Not found", status_code=404)
        return FileResponse(index_path)

    @app.get("/{full_path:path}", include_in_schema=False)
    async def serve_frontend(full_path: str):
        if full_path.startswith("api/"):
            return _error("Not found", 404)
        candidate = (root / full_path).resolve()
        if not candidate.is_relative_to(root):
            return PlainTextResponse("Forbidden", status_code=403)
        if candidate.is_file():
            return FileResponse(candidate, headers={"Cache-Control": "public, max-age=3600"})
        if index_path.exists():
            return FileResponse(index_path)
        return PlainTextResponse("Not found", status_code=404)


def main() -> None:
    """Run the service with uvicorn using HOST/PORT from the environment."""
    settings = load_settings()
    logger.info("Starting on %s:%d", settings.host, settings.port)
    uvicorn.run(
        "title_finder.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
