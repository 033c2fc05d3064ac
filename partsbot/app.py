from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .assistant import ShoppingAssistant
from .config import Settings, load_settings
from .errors import AssistantError
from .gemini_client import GeminiClient
from .models import ChatRequest, ChatResponse, ConfirmRequest, ConfirmResponse
from .product_index import ProductIndex
from .resource_loader import CatalogLoader
from .shop_store import ShopStore

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

logger = logging.getLogger("partsbot.app")


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    role: str


def configure_logging(level_name: str) -> None:
    """Install the default handler once and set the package logger level."""
    level = getattr(logging, level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("partsbot").setLevel(level)


def build_assistant(settings: Settings) -> ShoppingAssistant:
    """Purpose: Wire the production collaborators into a ShoppingAssistant.
    Inputs/Outputs: Input is Settings; output is a ready assistant.
    Side Effects / State: Configures the Gemini SDK when a key is present; loads the
        shop data file.
    Dependencies: Uses GeminiClient, CatalogLoader, ProductIndex, and ShopStore.
    Failure Modes: Without GEMINI_API_KEY the assistant starts with no LLM and every
        chat call fails with ConfigurationError.
    If Removed: The app cannot serve chat or confirm requests.
    Testing Notes: Build with an empty key and expect /ai/chat to return 503.
    """
    # The catalog is read lazily by the index on first use.
    gemini = GeminiClient(settings) if settings.llm_configured else None
    if gemini is None:
        logger.warning("GEMINI_API_KEY is not set; /ai/chat is disabled")
    index = ProductIndex(CatalogLoader(settings.catalog_path), ttl_sec=settings.product_index_ttl_sec)
    shop = ShopStore(settings.shop_data_path, index)
    return ShoppingAssistant(
        llm=gemini,
        index=index,
        orders=shop,
        addresses=shop,
        cart=shop,
        settings=settings,
    )


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> AuthUser:
    """Identity forwarded by the authenticating gateway; a missing id is a 401."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return AuthUser(user_id=x_user_id.strip(), role=(x_user_role or "user").strip().lower())


def get_assistant(request: Request) -> ShoppingAssistant:
    return request.app.state.assistant


def create_app(settings: Optional[Settings] = None, assistant: Optional[ShoppingAssistant] = None) -> FastAPI:
    """Purpose: Build the FastAPI application and register routes and error mapping.
    Inputs/Outputs: Optional Settings and a prebuilt assistant; output is a FastAPI app.
    Side Effects / State: Configures logging; stores the assistant on app.state.
    Dependencies: Uses load_settings, build_assistant, and the AssistantError taxonomy.
    Failure Modes: Invalid numeric env values raise ValueError at startup.
    If Removed: No HTTP surface exists.
    Testing Notes: Pass a test assistant and drive it with TestClient.
    """
    # Settings come from the environment unless a test passes its own.
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Partsbot Shopping Assistant")
    app.state.settings = settings
    app.state.assistant = assistant or build_assistant(settings)

    @app.exception_handler(AssistantError)
    def handle_assistant_error(request: Request, exc: AssistantError) -> JSONResponse:
        logger.info("route=%s status=%s error=%s", request.url.path, exc.status_code, type(exc).__name__)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "llm_configured": settings.llm_configured}

    @app.post("/ai/chat", response_model=ChatResponse)
    def chat(
        payload: ChatRequest,
        user: AuthUser = Depends(current_user),
        assistant: ShoppingAssistant = Depends(get_assistant),
    ) -> ChatResponse:
        """Purpose: Answer a chat turn for the authenticated user.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse.
        Side Effects / State: May create pending actions and fill caches.
        Dependencies: Uses ShoppingAssistant.chat.
        Failure Modes: AssistantError subclasses map to their status codes.
        If Removed: Clients cannot chat with the assistant.
        Testing Notes: A request without X-User-Id returns 401.
        """
        # Sync handler; FastAPI runs it in the worker thread pool.
        return assistant.chat(payload, user.user_id, user.role)

    @app.post("/ai/confirm", response_model=ConfirmResponse)
    def confirm(
        payload: ConfirmRequest,
        user: AuthUser = Depends(current_user),
        assistant: ShoppingAssistant = Depends(get_assistant),
    ) -> ConfirmResponse:
        """Purpose: Confirm a pending action and return the updated cart.
        Inputs/Outputs: Input is ConfirmRequest; output is ConfirmResponse.
        Side Effects / State: Consumes the pending action and mutates the cart.
        Dependencies: Uses ShoppingAssistant.confirm.
        Failure Modes: 404 unknown/used id, 403 wrong owner, 400 expired or cart rejection.
        If Removed: Proposed cart actions cannot be executed.
        Testing Notes: Confirming the same id twice returns 404 the second time.
        """
        # Ownership comes from the authenticated header, never from the body.
        return assistant.confirm(payload, user.user_id)

    return app


app = create_app()
