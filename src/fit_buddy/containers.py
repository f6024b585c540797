"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from fit_buddy.adapters.file_storage import FileLedgerStorage
from fit_buddy.adapters.openai_advice_client import OpenAIAdviceClient
from fit_buddy.adapters.openai_realtime_transport import OpenAIRealtimeTransport
from fit_buddy.adapters.openai_vision_client import OpenAIVisionClient
from fit_buddy.adapters.sounddevice_audio import SoundDeviceBackend
from fit_buddy.adapters.supabase_storage import SupabaseLedgerStorage
from fit_buddy.config import Settings, parse_storage_backend
from fit_buddy.domain.errors import ConfigurationError
from fit_buddy.services.advice import AdviceService, ChatService
from fit_buddy.services.ledger import LedgerService, LedgerStorage
from fit_buddy.services.vision import MealVisionService
from fit_buddy.services.voice import VoiceSession

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    ledger_service: LedgerService
    vision_service: MealVisionService | None
    chat_service: ChatService | None
    voice_session: VoiceSession
    close_resources: Callable[[], Awaitable[None]]
    ai_unavailable_reason: str | None = None


def build_storage(settings: Settings) -> LedgerStorage:
    """Create the configured ledger storage."""
    backend = parse_storage_backend(settings.storage_backend)
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for supabase storage."
            )
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseLedgerStorage(client)
    return FileLedgerStorage.create(settings.storage_dir)


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    ledger_service = LedgerService(build_storage(resolved_settings))

    vision_service: MealVisionService | None = None
    chat_service: ChatService | None = None
    clients: list[OpenAIVisionClient | OpenAIAdviceClient] = []
    ai_unavailable_reason: str | None = None
    try:
        vision_client = OpenAIVisionClient.create(resolved_settings.openai_api_key)
        advice_client = OpenAIAdviceClient.create(resolved_settings.openai_api_key)
    except ConfigurationError as exc:
        _logger.warning("AI features disabled: %s", exc.message)
        ai_unavailable_reason = exc.message
    else:
        clients = [vision_client, advice_client]
        vision_service = MealVisionService(
            client=vision_client,
            model=resolved_settings.openai_model,
            reasoning_effort=resolved_settings.openai_reasoning_effort,
            store=resolved_settings.openai_store,
        )
        chat_service = ChatService(
            advice_service=AdviceService(
                client=advice_client, model=resolved_settings.openai_advice_model
            ),
            ledger=ledger_service,
        )

    voice_session = VoiceSession(
        transport_factory=OpenAIRealtimeTransport.factory(
            api_key=resolved_settings.openai_api_key,
            model=resolved_settings.openai_realtime_model,
            voice=resolved_settings.realtime_voice,
            instructions=resolved_settings.realtime_instructions,
        ),
        audio_backend=SoundDeviceBackend(),
        input_sample_rate=resolved_settings.voice_input_sample_rate,
        output_sample_rate=resolved_settings.voice_output_sample_rate,
        frame_size=resolved_settings.voice_frame_size,
        send_queue_size=resolved_settings.voice_send_queue_size,
        connect_timeout=resolved_settings.voice_connect_timeout_seconds,
    )

    async def close_resources() -> None:
        for client in clients:
            await client.close()

    return AppContainer(
        settings=resolved_settings,
        ledger_service=ledger_service,
        vision_service=vision_service,
        chat_service=chat_service,
        voice_session=voice_session,
        close_resources=close_resources,
        ai_unavailable_reason=ai_unavailable_reason,
    )
