"""Nutrition advice chat backed by a web-grounded LLM."""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol
from uuid import uuid4

from pydantic import ValidationError

from fit_buddy.domain.chat import Advice, ChatMessage, Citation, Sender
from fit_buddy.domain.errors import AdviceError
from fit_buddy.domain.ledger import Nutrients
from fit_buddy.services.ledger import LedgerService

FALLBACK_REPLY = "Sorry, I had trouble getting a response. Please try again."

_logger = logging.getLogger(__name__)


class AdviceClient(Protocol):
    """Interface for web-grounded text generation."""

    async def generate(self, *, model: str, prompt: str) -> dict[str, object]:
        """Return ``{"text": str, "citations": [{"web": {...}}]}``."""


def build_advice_context(totals: Nutrients, targets: Nutrients, question: str) -> str:
    """Embed the day's nutrition summary in front of the user's question."""
    remaining = max(0, round(targets.calories - totals.calories))
    return (
        "My current daily nutrition summary is:\n"
        f"- Calories eaten: {_fmt(totals.calories)} / {_fmt(targets.calories)}\n"
        f"- Protein eaten: {_fmt(totals.protein)}g / {_fmt(targets.protein)}g\n"
        f"- Carbs eaten: {_fmt(totals.carbs)}g / {_fmt(targets.carbs)}g\n"
        f"- Fat eaten: {_fmt(totals.fat)}g / {_fmt(targets.fat)}g\n"
        f"- Calories remaining: {remaining}\n"
        "\n"
        f"Based on this, here is my question: {question.strip()}"
    )


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


@dataclass
class AdviceService:
    """Asks the advice client and validates its answer."""

    client: AdviceClient
    model: str

    async def ask(self, prompt: str) -> Advice:
        """Return advisory text and citations for a prompt."""
        try:
            raw = await self.client.generate(model=self.model, prompt=prompt)
        except AdviceError:
            raise
        except Exception as exc:
            _logger.exception("Error getting meal advice")
            raise AdviceError() from exc
        return _parse_advice(raw)


def _parse_advice(raw: dict[str, object]) -> Advice:
    text = raw.get("text") if isinstance(raw, dict) else None
    if not isinstance(text, str) or not text.strip():
        raise AdviceError("The assistant returned an empty answer.")
    citations: list[Citation] = []
    for chunk in raw.get("citations") or []:
        try:
            citation = Citation.model_validate(chunk)
        except ValidationError:
            _logger.warning("Dropping malformed citation: %s", chunk)
            continue
        if citation.web is not None:
            citations.append(citation)
    return Advice(text=text.strip(), citations=citations)


@dataclass
class ChatService:
    """Keeps the chat transcript and grounds questions in today's totals."""

    advice_service: AdviceService
    ledger: LedgerService
    _messages: list[ChatMessage] = field(default_factory=list, repr=False)

    def messages(self) -> list[ChatMessage]:
        """Return the transcript in order."""
        return list(self._messages)

    def reset(self) -> None:
        """Clear the transcript."""
        self._messages.clear()

    async def send(self, question: str, day: date | None = None) -> ChatMessage | None:
        """Send a question and append the assistant's reply."""
        if not question or not question.strip():
            return None
        self._messages.append(
            ChatMessage(id=str(uuid4()), sender=Sender.USER, text=question.strip())
        )
        resolved_day = day or self.ledger.selected_date()
        log = self.ledger.get_log(resolved_day)
        prompt = build_advice_context(
            self.ledger.totals(resolved_day), log.targets, question
        )
        try:
            advice = await self.advice_service.ask(prompt)
            reply = ChatMessage(
                id=str(uuid4()),
                sender=Sender.AI,
                text=advice.text,
                citations=advice.citations,
            )
        except AdviceError as exc:
            _logger.warning("Advice unavailable: %s", exc.message)
            reply = ChatMessage(id=str(uuid4()), sender=Sender.AI, text=FALLBACK_REPLY)
        self._messages.append(reply)
        return reply
