"""Domain models for the nutrition ledger."""

from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _LedgerModel(BaseModel):
    """Immutable model with camelCase wire names; numbers must be finite."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, allow_inf_nan=False)


class Nutrients(_LedgerModel):
    """Calories and macronutrients; grams for macros, kcal for calories."""

    calories: float = Field(default=0.0, ge=0)
    protein: float = Field(default=0.0, ge=0)
    carbs: float = Field(default=0.0, ge=0)
    fat: float = Field(default=0.0, ge=0)

    @classmethod
    def zero(cls) -> "Nutrients":
        return cls()

    def __add__(self, other: "Nutrients") -> "Nutrients":
        if not isinstance(other, Nutrients):
            return NotImplemented
        return Nutrients(
            calories=self.calories + other.calories,
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
        )


DEFAULT_TARGETS = Nutrients(calories=2200, protein=150, carbs=250, fat=70)


class MealDraft(_LedgerModel):
    """User-supplied meal fields before identity is assigned."""

    name: str = Field(min_length=1)
    nutrients: Nutrients
    image_url: str | None = Field(default=None, alias="imageUrl")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("meal name must not be blank")
        return cleaned


class Meal(MealDraft):
    """A logged meal. Never mutated after creation."""

    id: str
    timestamp: datetime


class TrainingDraft(_LedgerModel):
    """User-supplied training fields before identity is assigned."""

    name: str = Field(min_length=1)
    duration: float = Field(gt=0, description="Minutes.")
    calories_burned: float = Field(gt=0, alias="caloriesBurned")


class Training(TrainingDraft):
    """A logged training session. Never mutated after creation."""

    id: str
    timestamp: datetime


class DailyLog(_LedgerModel):
    """Everything recorded for one calendar date."""

    meals: list[Meal] = Field(default_factory=list)
    trainings: list[Training] = Field(default_factory=list)
    weight: float | None = Field(default=None, gt=0)
    targets: Nutrients = DEFAULT_TARGETS

    @classmethod
    def empty(cls, targets: Nutrients = DEFAULT_TARGETS) -> "DailyLog":
        return cls(meals=[], trainings=[], weight=None, targets=targets)


class DaySummary(_LedgerModel):
    """Dashboard read model for one day."""

    day: date = Field(alias="date")
    log: DailyLog
    totals: Nutrients
    remaining_calories: float = Field(alias="remainingCalories")
    status: str


@dataclass(frozen=True)
class WeightPoint:
    """A single body weight sample."""

    day: date
    weight: float
