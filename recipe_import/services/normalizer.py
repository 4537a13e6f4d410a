from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..errors import RecipeValidationError
from ..models.config_models import RecipeDefaults
from ..models.error_record import MISSING_REQUIRED_FIELDS, NORMALIZATION_ERROR, RowError
from ..models.recipe import Ingredient, NormalizedRecipe, RawRow, utc_now_iso

"""Row normalization: RawRow -> NormalizedRecipe | RowError.

Every row yields exactly one outcome and never raises to the caller. Rows are
independent: one row's failure has no effect on any other.

Ingredient and procedure text are split with positional heuristics:
- ingredients: split on newlines or commas, then "<qty> <unit> <name>"
- procedure: split on newlines or a leading "N." step number
"""

__all__ = [
    "NormalizationBatch",
    "RowNormalizer",
    "parse_ingredients",
    "parse_procedure",
]

logger = logging.getLogger(__name__)

_INGREDIENT_SPLIT = re.compile(r"[\r\n]+|,")
# quantity (digits, '.', '/') / unit (one word) / rest = name
_INGREDIENT_LINE = re.compile(r"^([\d./]+)?\s*(\w+)?\s+(.+)$")
# "N." counts as a step number only when it starts a word and is followed by whitespace or end
_STEP_SPLIT = re.compile(r"[\r\n]+|(?<!\S)\d+\.(?=\s|$)\s*")
_LEADING_INT = re.compile(r"\s*(\d+)")


class _MissingFieldsError(RecipeValidationError):
    pass


def parse_ingredients(text: str) -> list[Ingredient]:
    items = [part.strip() for part in _INGREDIENT_SPLIT.split(text)]
    ingredients: list[Ingredient] = []
    for item in items:
        if not item:
            continue
        m = _INGREDIENT_LINE.match(item)
        if m:
            ingredients.append(
                Ingredient(
                    quantity=m.group(1) or "",
                    unit=m.group(2) or "",
                    name=m.group(3) or item,
                )
            )
        else:
            ingredients.append(Ingredient(name=item))
    return ingredients


def parse_procedure(text: str) -> list[str]:
    return [step.strip() for step in _STEP_SPLIT.split(text) if step and step.strip()]


def _parse_batch_number(text: str, default: int) -> int:
    m = _LEADING_INT.match(text)
    if not m:
        return default
    value = int(m.group(1))
    return value if value >= 1 else default


def _text(row: RawRow, key: str) -> str:
    value = row.get(key)
    return value.strip() if isinstance(value, str) else ""


@dataclass
class NormalizationBatch:
    recipes: list[tuple[int, NormalizedRecipe]] = field(default_factory=list)  # (source row, recipe)
    errors: list[RowError] = field(default_factory=list)


class RowNormalizer:
    """Turns RawRows into NormalizedRecipes using the configured defaults."""

    def __init__(self, defaults: RecipeDefaults | None = None) -> None:
        self.defaults = defaults or RecipeDefaults()

    def build_recipe(self, row: RawRow) -> NormalizedRecipe:
        """Build a recipe or raise RecipeValidationError."""
        name = _text(row, "name")
        ingredients_text = _text(row, "ingredients")
        instructions_text = _text(row, "instructions")
        if not name or not ingredients_text or not instructions_text:
            raise _MissingFieldsError("Missing required fields")

        ingredients = parse_ingredients(ingredients_text)
        if not ingredients:
            raise RecipeValidationError("No ingredients could be parsed")
        procedure = parse_procedure(instructions_text)
        if not procedure:
            raise RecipeValidationError("No procedure steps could be parsed")

        d = self.defaults
        equipment_text = _text(row, "equipment")
        equipment = tuple(e.strip() for e in equipment_text.split(",") if e.strip())
        created = _text(row, "createdDate")

        return NormalizedRecipe(
            name=name,
            ingredients=tuple(ingredients),
            procedure=tuple(procedure),
            description=_text(row, "description") or None,
            version=d.version,
            station=_text(row, "station") or d.station,
            batch_number=_parse_batch_number(_text(row, "batchNumber"), d.batch_number),
            equipment=equipment,
            recipe_yield=_text(row, "servings") or _text(row, "yield") or d.recipe_yield,
            portion_size=_text(row, "portionSize") or d.portion_size,
            portions_per_recipe=_text(row, "portionsPerRecipe") or d.portions_per_recipe,
            prep_time=_text(row, "prepTime") or None,
            cook_time=_text(row, "cookTime") or None,
            created_date=created or utc_now_iso(),
        )

    def normalize_row(self, row: RawRow, line_number: int) -> NormalizedRecipe | RowError:
        try:
            return self.build_recipe(row)
        except _MissingFieldsError as e:
            return RowError(row=line_number, message=str(e), error_type=MISSING_REQUIRED_FIELDS)
        except Exception as e:
            logger.debug("row=%d normalization failed: %s", line_number, e)
            return RowError(
                row=line_number,
                message=str(e) or "Unknown error",
                error_type=NORMALIZATION_ERROR,
            )

    def normalize(
        self,
        rows: Sequence[RawRow],
        line_numbers: Sequence[int] | None = None,
    ) -> NormalizationBatch:
        """Normalize rows in order.

        Args:
            rows: Raw rows from a FormatAdapter
            line_numbers: Source line per row. Defaults to index + 2
                (0-based index, plus the header line)
        """
        if line_numbers is not None and len(line_numbers) != len(rows):
            raise ValueError("line_numbers must match rows in length")
        batch = NormalizationBatch()
        for index, row in enumerate(rows):
            line = line_numbers[index] if line_numbers is not None else index + 2
            outcome = self.normalize_row(row, line)
            if isinstance(outcome, RowError):
                batch.errors.append(outcome)
            else:
                batch.recipes.append((line, outcome))
        return batch
