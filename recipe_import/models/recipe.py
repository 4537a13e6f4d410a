from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from recipe_import.errors import RecipeValidationError

"""Recipe domain models.

RawRow is what a FormatAdapter emits (text only, one per source record).
NormalizedRecipe is the validated entity handed to the persistence sink; it
refuses construction unless name, ingredients and procedure are all present.
"""

__all__ = [
    "RawRow",
    "Ingredient",
    "NormalizedRecipe",
    "utc_now_iso",
]

# Field name -> trimmed text. Missing cells are "".
RawRow = dict[str, str]


@dataclass(frozen=True)
class Ingredient:
    name: str
    quantity: str = ""
    unit: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "quantity": self.quantity, "unit": self.unit}


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class NormalizedRecipe:
    """Validated recipe ready for persistence.

    Attributes:
        name: Recipe name (non-empty)
        ingredients: Parsed ingredient lines (non-empty, source order)
        procedure: Parsed steps (non-empty, source order)
        recipe_yield: Stored under the "yield" key in documents
    """
    name: str
    ingredients: tuple[Ingredient, ...]
    procedure: tuple[str, ...]
    description: str | None = None
    version: str = "1.0"
    station: str = "default"
    batch_number: int = 1
    equipment: tuple[str, ...] = ()
    recipe_yield: str = "1"
    portion_size: str = "1"
    portions_per_recipe: str = "1"
    prep_time: str | None = None
    cook_time: str | None = None
    created_date: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise RecipeValidationError("Recipe name must not be empty")
        if not self.ingredients:
            raise RecipeValidationError("Recipe must have at least one ingredient")
        if not self.procedure:
            raise RecipeValidationError("Recipe must have at least one procedure step")
        if self.batch_number < 1:
            raise RecipeValidationError(f"Invalid batch number: {self.batch_number}")

    def to_document(self) -> dict[str, Any]:
        """Persistence shape (camelCase keys, lists instead of tuples)."""
        return {
            "name": self.name,
            "description": self.description,
            "ingredients": [i.to_dict() for i in self.ingredients],
            "procedure": list(self.procedure),
            "version": self.version,
            "station": self.station,
            "batchNumber": self.batch_number,
            "equipment": list(self.equipment),
            "yield": self.recipe_yield,
            "portionSize": self.portion_size,
            "portionsPerRecipe": self.portions_per_recipe,
            "prepTime": self.prep_time,
            "cookTime": self.cook_time,
            "createdDate": self.created_date,
        }
