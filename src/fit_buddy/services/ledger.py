"""Nutrition ledger service backed by key/value blob storage."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Protocol
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from fit_buddy.domain.errors import PersistenceError
from fit_buddy.domain.ledger import (
    DEFAULT_TARGETS,
    DailyLog,
    DaySummary,
    Meal,
    MealDraft,
    Nutrients,
    Training,
    TrainingDraft,
    WeightPoint,
)

DAILY_DATA_KEY = "fitBuddyAIDailyData"
LATEST_LOG_DATE_KEY = "fitBuddyAILatestLogDate"

_LEDGER_ADAPTER = TypeAdapter(dict[date, DailyLog])

_logger = logging.getLogger(__name__)


class LedgerStorage(Protocol):
    """Persistence interface for string blobs stored under a key."""

    def get_item(self, key: str) -> str | None:
        """Return the stored value for a key, if present."""

    def set_item(self, key: str, value: str) -> None:
        """Durably store a value under a key."""


def load_ledger(raw: str | None) -> dict[date, DailyLog]:
    """Parse a persisted ledger blob, degrading to an empty ledger."""
    if raw is None:
        return {}
    try:
        return _LEDGER_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        _logger.warning(
            "Failed to parse daily data, starting empty: %s", exc.errors()[:1]
        )
        return {}


def dump_ledger(ledger: dict[date, DailyLog]) -> str:
    """Serialize the ledger to its persisted JSON form."""
    return _LEDGER_ADAPTER.dump_json(ledger, by_alias=True).decode("utf-8")


def sum_nutrients(meals: list[Meal]) -> Nutrients:
    """Fold meal nutrients into day totals."""
    total = Nutrients.zero()
    for meal in meals:
        total = total + meal.nutrients
    return total


def format_calorie_status(remaining: float) -> str:
    """Render remaining calories as 'N left' or 'N over'."""
    rounded = round(remaining)
    if rounded >= 0:
        return f"{rounded:,} left"
    return f"{abs(rounded):,} over"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class LedgerService:
    """Owns all per-day meal, training and weight data."""

    storage: LedgerStorage
    default_targets: Nutrients = DEFAULT_TARGETS
    clock: Callable[[], datetime] = _utc_now
    _ledger: dict[date, DailyLog] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._ledger = self._load()

    def get_log(self, day: date) -> DailyLog:
        """Return the day's log, synthesizing an empty one if absent."""
        log = self._ledger.get(day)
        if log is None:
            return DailyLog.empty(self.default_targets)
        return log

    def add_meal(self, day: date, draft: MealDraft) -> Meal:
        """Append a meal to the day and persist."""
        meal = Meal(
            id=str(uuid4()),
            timestamp=self.clock(),
            name=draft.name,
            nutrients=draft.nutrients,
            image_url=draft.image_url,
        )
        log = self.get_log(day)
        self._write(day, log.model_copy(update={"meals": [*log.meals, meal]}))
        return meal

    def add_training(self, day: date, draft: TrainingDraft) -> Training:
        """Append a training session to the day and persist."""
        training = Training(
            id=str(uuid4()),
            timestamp=self.clock(),
            name=draft.name,
            duration=draft.duration,
            calories_burned=draft.calories_burned,
        )
        log = self.get_log(day)
        self._write(
            day, log.model_copy(update={"trainings": [*log.trainings, training]})
        )
        return training

    def set_weight(self, day: date, value: float) -> DailyLog:
        """Record the day's body weight, replacing any earlier sample."""
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValueError("weight must be a number")
        if not math.isfinite(value) or value <= 0:
            raise ValueError("weight must be a positive finite number")
        updated = self.get_log(day).model_copy(update={"weight": float(value)})
        self._write(day, updated)
        return updated

    def totals(self, day: date) -> Nutrients:
        """Return the sum of the day's meal nutrients."""
        return sum_nutrients(self.get_log(day).meals)

    def remaining_calories(self, day: date) -> float:
        """Return target minus eaten calories; negative when over target."""
        return self.get_log(day).targets.calories - self.totals(day).calories

    def calorie_status(self, day: date) -> str:
        """Return the dashboard calorie label for the day."""
        return format_calorie_status(self.remaining_calories(day))

    def summary(self, day: date) -> DaySummary:
        """Return log, totals and remaining calories for the day."""
        log = self.get_log(day)
        totals = sum_nutrients(log.meals)
        remaining = log.targets.calories - totals.calories
        return DaySummary(
            day=day,
            log=log,
            totals=totals,
            remaining_calories=remaining,
            status=format_calorie_status(remaining),
        )

    def weight_history(self) -> list[WeightPoint]:
        """Return recorded body weights ordered by date."""
        points = [
            WeightPoint(day=day, weight=log.weight)
            for day, log in self._ledger.items()
            if log.weight is not None and log.weight > 0
        ]
        return sorted(points, key=lambda point: point.day)

    def dates(self) -> list[date]:
        """Return the days that have stored logs."""
        return sorted(self._ledger)

    def selected_date(self) -> date:
        """Return the last viewed date, or today when unset or unreadable."""
        try:
            raw = self.storage.get_item(LATEST_LOG_DATE_KEY)
        except PersistenceError:
            _logger.warning("Failed to read latest log date", exc_info=True)
            raw = None
        if raw:
            try:
                return datetime.fromisoformat(raw).date()
            except ValueError:
                _logger.warning("Ignoring invalid latest log date: %s", raw)
        return self.clock().astimezone().date()

    def select_date(self, day: date) -> None:
        """Persist the last viewed date."""
        stamp = datetime(day.year, day.month, day.day, tzinfo=UTC)
        self.storage.set_item(LATEST_LOG_DATE_KEY, stamp.isoformat())

    def reload(self) -> None:
        """Re-read the ledger from storage."""
        self._ledger = self._load()

    def _load(self) -> dict[date, DailyLog]:
        try:
            raw = self.storage.get_item(DAILY_DATA_KEY)
        except PersistenceError:
            _logger.warning("Failed to read daily data, starting empty", exc_info=True)
            return {}
        return load_ledger(raw)

    def _write(self, day: date, log: DailyLog) -> None:
        updated = {**self._ledger, day: log}
        try:
            self.storage.set_item(DAILY_DATA_KEY, dump_ledger(updated))
        except PersistenceError:
            _logger.exception("Failed to save daily data")
            raise
        self._ledger = updated
