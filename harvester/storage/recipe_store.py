"""Recipe Store: upserts from the crawler and audit updates from the auditor."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

import orjson

from harvester.errors import StoreError
from harvester.orchestrator.jobs import utcnow
from harvester.storage.db import from_db_time, to_db_time
from harvester.storage.models import QAStatus, Recipe

_CONTENT_COLUMNS = (
    "name",
    "description",
    "image",
    "prep_time",
    "cook_time",
    "total_time",
    "recipe_yield",
    "recipe_category",
    "recipe_cuisine",
)


def _dumps(value: object) -> str:
    return orjson.dumps(value).decode()


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return orjson.loads(value)
    except orjson.JSONDecodeError:
        return default


def _row_to_recipe(row: sqlite3.Row) -> Recipe:
    return Recipe(
        id=row["id"],
        url=row["url"],
        **{column: row[column] for column in _CONTENT_COLUMNS},
        recipe_ingredients=_loads(row["recipe_ingredients_json"], []),
        recipe_instructions=_loads(row["recipe_instructions_json"], []),
        nutrition=_loads(row["nutrition_json"], None),
        qa_status=QAStatus(row["qa_status"]),
        quality_score=row["quality_score"],
        audit_log=_loads(row["audit_log_json"], []),
        last_audited_at=from_db_time(row["last_audited_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class RecipeStore:
    """SQLite-backed store for ``recipes`` rows keyed by normalised URL."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def upsert(self, recipe: Recipe) -> None:
        """Insert or replace the recipe for ``recipe.url``.

        A replaced recipe goes back to ``pending`` so the auditor re-checks it.
        """
        params: Dict[str, object] = {column: getattr(recipe, column) for column in _CONTENT_COLUMNS}
        params.update(
            url=recipe.url,
            recipe_ingredients_json=_dumps(recipe.recipe_ingredients),
            recipe_instructions_json=_dumps(recipe.recipe_instructions),
            nutrition_json=_dumps(recipe.nutrition) if recipe.nutrition else None,
            qa_status=QAStatus.PENDING.value,
            quality_score=recipe.quality_score,
            updated_at=to_db_time(utcnow()),
        )
        columns = list(params)
        updates = ", ".join(f"{column} = excluded.{column}" for column in columns if column != "url")
        sql = (
            f"INSERT INTO recipes ({', '.join(columns)})"
            f" VALUES ({', '.join(':' + column for column in columns)})"
            f" ON CONFLICT(url) DO UPDATE SET {updates}, last_audited_at = NULL"
        )
        try:
            self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"recipe upsert failed for {recipe.url}: {exc}") from exc

    def get_by_url(self, url: str) -> Optional[Recipe]:
        try:
            row = self._conn.execute("SELECT * FROM recipes WHERE url = ?", (url,)).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return _row_to_recipe(row) if row else None

    def pending_audit(self, limit: int) -> List[Recipe]:
        try:
            rows = self._conn.execute(
                "SELECT * FROM recipes WHERE qa_status = 'pending' OR last_audited_at IS NULL"
                " ORDER BY id ASC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"audit batch read failed: {exc}") from exc
        return [_row_to_recipe(row) for row in rows]

    def list_visible(self, limit: int = 50) -> List[Recipe]:
        """Recipes that may be surfaced to consumers (everything not quarantined)."""
        try:
            rows = self._conn.execute(
                "SELECT * FROM recipes WHERE qa_status != 'quarantined' ORDER BY updated_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return [_row_to_recipe(row) for row in rows]

    def apply_audit(
        self,
        recipe_id: int,
        *,
        qa_status: QAStatus,
        quality_score: int,
        audit_log: List[str],
        audited_at: datetime,
        nutrition: Optional[Dict[str, Any]] = None,
        image: Optional[str] = None,
    ) -> None:
        """Persist the outcome of one audit in a single UPDATE."""
        assignments = ["qa_status = ?", "quality_score = ?", "audit_log_json = ?", "last_audited_at = ?"]
        params: List[object] = [qa_status.value, quality_score, _dumps(audit_log), to_db_time(audited_at)]
        if nutrition:
            assignments.append("nutrition_json = ?")
            params.append(_dumps(nutrition))
        if image:
            assignments.append("image = ?")
            params.append(image)
        params.append(recipe_id)
        try:
            self._conn.execute(f"UPDATE recipes SET {', '.join(assignments)} WHERE id = ?", params)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"audit update failed for recipe {recipe_id}: {exc}") from exc
