"""Models for meal image analysis results."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fit_buddy.domain.ledger import MealDraft, Nutrients


class MealEstimate(BaseModel):
    """Structured nutrition estimate for a photographed meal."""

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    meal_name: str = Field(alias="mealName")
    calories: float
    protein: float
    carbs: float
    fat: float

    @field_validator("calories", "protein", "carbs", "fat")
    @classmethod
    def _clamp_non_negative(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("meal_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    def rounded(self) -> Nutrients:
        """Return integer-rounded nutrients for display and storage."""
        return Nutrients(
            calories=round(self.calories),
            protein=round(self.protein),
            carbs=round(self.carbs),
            fat=round(self.fat),
        )

    def to_draft(self, image_url: str | None = None) -> MealDraft:
        """Build a meal draft the user can edit before saving."""
        return MealDraft(
            name=self.meal_name or "Meal",
            nutrients=self.rounded(),
            image_url=image_url,
        )
