"""FastAPI application factory."""

import base64
import binascii
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from fit_buddy.api.models import (
    AnalyzeMealRequest,
    ChatRequest,
    SelectedDateRequest,
    WeightRequest,
)
from fit_buddy.app_logging import configure_logging
from fit_buddy.containers import AppContainer
from fit_buddy.domain.chat import ChatMessage
from fit_buddy.domain.errors import AnalysisError, PersistenceError
from fit_buddy.domain.ledger import (
    DailyLog,
    DaySummary,
    Meal,
    MealDraft,
    Training,
    TrainingDraft,
)
from fit_buddy.domain.voice import VoiceSnapshot
from fit_buddy.services.advice import ChatService
from fit_buddy.services.vision import MealVisionService


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        state_container: AppContainer = app.state.container
        try:
            await state_container.voice_session.stop()
        except Exception:
            logger.exception("Failed to stop voice session on shutdown")
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(
        request: Request, exc: PersistenceError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/logs/{day}")
    async def get_day(day: date, request: Request) -> DaySummary:
        """Return the day's log with totals and remaining calories."""
        state_container: AppContainer = request.app.state.container
        return state_container.ledger_service.summary(day)

    @app.post("/logs/{day}/meals", status_code=status.HTTP_201_CREATED)
    async def add_meal(day: date, draft: MealDraft, request: Request) -> Meal:
        """Log a meal for the day."""
        state_container: AppContainer = request.app.state.container
        return state_container.ledger_service.add_meal(day, draft)

    @app.post("/logs/{day}/trainings", status_code=status.HTTP_201_CREATED)
    async def add_training(
        day: date, draft: TrainingDraft, request: Request
    ) -> Training:
        """Log a training session for the day."""
        state_container: AppContainer = request.app.state.container
        return state_container.ledger_service.add_training(day, draft)

    @app.put("/logs/{day}/weight")
    async def set_weight(
        day: date, payload: WeightRequest, request: Request
    ) -> DailyLog:
        """Record the day's body weight."""
        state_container: AppContainer = request.app.state.container
        return state_container.ledger_service.set_weight(day, payload.weight)

    @app.get("/progress/weight")
    async def weight_progress(request: Request) -> dict[str, object]:
        """Return recorded body weights in date order."""
        state_container: AppContainer = request.app.state.container
        points = state_container.ledger_service.weight_history()
        return {
            "points": [
                {"date": point.day.isoformat(), "weight": point.weight}
                for point in points
            ],
            "has_trend": len(points) >= 2,
        }

    @app.get("/selected-date")
    async def get_selected_date(request: Request) -> dict[str, str]:
        """Return the last viewed date."""
        state_container: AppContainer = request.app.state.container
        return {"date": state_container.ledger_service.selected_date().isoformat()}

    @app.put("/selected-date")
    async def put_selected_date(
        payload: SelectedDateRequest, request: Request
    ) -> dict[str, str]:
        """Remember the last viewed date."""
        state_container: AppContainer = request.app.state.container
        state_container.ledger_service.select_date(payload.day)
        return {"date": payload.day.isoformat()}

    @app.post("/meals/analyze")
    async def analyze_meal(payload: AnalyzeMealRequest, request: Request) -> MealDraft:
        """Estimate a meal from a photo; the result is an editable draft."""
        state_container: AppContainer = request.app.state.container
        vision_service = _require_vision(state_container)
        try:
            image_bytes = base64.b64decode(payload.image, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Image must be base64 encoded.",
            ) from exc
        try:
            estimate = await vision_service.analyze(image_bytes, payload.mime_type)
        except AnalysisError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message
            ) from exc
        return estimate.to_draft()

    @app.get("/chat")
    async def chat_history(request: Request) -> dict[str, list[ChatMessage]]:
        """Return the chat transcript."""
        state_container: AppContainer = request.app.state.container
        return {"messages": _require_chat(state_container).messages()}

    @app.post("/chat")
    async def chat_send(payload: ChatRequest, request: Request) -> dict[str, object]:
        """Ask the nutrition assistant a question."""
        state_container: AppContainer = request.app.state.container
        chat_service = _require_chat(state_container)
        reply = await chat_service.send(payload.message, payload.day)
        return {"reply": reply, "messages": chat_service.messages()}

    @app.delete("/chat")
    async def chat_reset(request: Request) -> dict[str, str]:
        """Clear the chat transcript."""
        state_container: AppContainer = request.app.state.container
        _require_chat(state_container).reset()
        return {"status": "ok"}

    @app.get("/live")
    async def live_state(request: Request) -> dict[str, object]:
        """Return the voice session state and transcripts."""
        state_container: AppContainer = request.app.state.container
        return _snapshot_payload(state_container.voice_session.snapshot())

    @app.post("/live/start")
    async def live_start(request: Request) -> dict[str, object]:
        """Start a voice session; ignored while one is running."""
        state_container: AppContainer = request.app.state.container
        await state_container.voice_session.start()
        return _snapshot_payload(state_container.voice_session.snapshot())

    @app.post("/live/stop")
    async def live_stop(request: Request) -> dict[str, object]:
        """Stop the voice session."""
        state_container: AppContainer = request.app.state.container
        await state_container.voice_session.stop()
        return _snapshot_payload(state_container.voice_session.snapshot())

    return app


def _require_vision(container: AppContainer) -> MealVisionService:
    if container.vision_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=container.ai_unavailable_reason or "Meal analysis is unavailable.",
        )
    return container.vision_service


def _require_chat(container: AppContainer) -> ChatService:
    if container.chat_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=container.ai_unavailable_reason or "Chat is unavailable.",
        )
    return container.chat_service


def _snapshot_payload(snapshot: VoiceSnapshot) -> dict[str, object]:
    payload = asdict(snapshot)
    payload["state"] = snapshot.state.value
    return payload
