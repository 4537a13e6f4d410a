from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import Json

from ..errors import SinkError
from ..models.recipe import NormalizedRecipe

"""Recipe persistence sinks.

The engine talks to a RecipeSink: insert() one recipe and get its id back,
flush() at each chunk boundary. PostgresRecipeSink wraps every INSERT in a
SAVEPOINT so a failing row is rolled back alone and the surrounding chunk
transaction stays usable; flush() commits the chunk.
"""

__all__ = [
    "RecipeSink",
    "PostgresRecipeSink",
    "InMemoryRecipeSink",
    "check_identifier",
]

logger = logging.getLogger(__name__)

SAVEPOINT = "recipe_row"


def check_identifier(name: str) -> str:
    """Allow only alphanumerics and underscores in table names."""
    if not name or not name.replace("_", "").isalnum():
        raise ValueError(f"invalid table name: {name!r}")
    return name


class RecipeSink(Protocol):
    def insert(self, recipe: NormalizedRecipe, source: str) -> Any:
        """Persist one recipe and return its generated id. Raise on failure."""
        ...

    def flush(self) -> None:
        """Chunk boundary."""
        ...


class PostgresRecipeSink:
    """psycopg2-backed sink. One INSERT ... RETURNING id per recipe."""

    COLUMNS = (
        "name",
        "description",
        "ingredients",
        "procedure",
        "version",
        "station",
        "batch_number",
        "equipment",
        "yield",
        "portion_size",
        "portions_per_recipe",
        "prep_time",
        "cook_time",
        "created_date",
        "import_source",
        "imported_at",
        "uploader_id",
    )

    def __init__(self, cursor: Any, table: str = "recipes", uploader_id: str | None = None) -> None:
        self._cursor = cursor
        self.table = check_identifier(table)
        self.uploader_id = uploader_id
        cols_sql = ",".join(f'"{c}"' for c in self.COLUMNS)
        placeholders = ",".join(["%s"] * len(self.COLUMNS))
        self._insert_sql = f"INSERT INTO {self.table} ({cols_sql}) VALUES ({placeholders}) RETURNING id"

    def _row_values(self, recipe: NormalizedRecipe, source: str) -> list[Any]:
        doc = recipe.to_document()
        return [
            doc["name"],
            doc["description"],
            Json(doc["ingredients"]),
            Json(doc["procedure"]),
            doc["version"],
            doc["station"],
            doc["batchNumber"],
            Json(doc["equipment"]),
            doc["yield"],
            doc["portionSize"],
            doc["portionsPerRecipe"],
            doc["prepTime"],
            doc["cookTime"],
            doc["createdDate"],
            source,
            datetime.now(UTC),
            self.uploader_id,
        ]

    def insert(self, recipe: NormalizedRecipe, source: str) -> Any:
        values = self._row_values(recipe, source)
        self._cursor.execute(f"SAVEPOINT {SAVEPOINT}")
        try:
            self._cursor.execute(self._insert_sql, values)
            returned = self._cursor.fetchone()
        except psycopg2.Error as e:
            self._cursor.execute(f"ROLLBACK TO SAVEPOINT {SAVEPOINT}")
            raise SinkError(str(e).strip() or type(e).__name__) from e
        self._cursor.execute(f"RELEASE SAVEPOINT {SAVEPOINT}")
        if not returned:
            raise SinkError(f"INSERT into {self.table} returned no id")
        return returned[0]

    def flush(self) -> None:
        try:
            self._cursor.connection.commit()
        except psycopg2.Error as e:
            raise SinkError(f"commit failed: {e}") from e


class InMemoryRecipeSink:
    """Keeps documents in a dict keyed by generated uuid (dry runs)."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.flushes = 0

    def insert(self, recipe: NormalizedRecipe, source: str) -> str:
        recipe_id = uuid.uuid4().hex
        doc = recipe.to_document()
        doc["importSource"] = source
        self.documents[recipe_id] = doc
        return recipe_id

    def flush(self) -> None:
        self.flushes += 1
