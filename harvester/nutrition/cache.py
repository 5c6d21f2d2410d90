"""Ingredient cache: provider results keyed by cleaned search term and schema version."""
from __future__ import annotations

import sqlite3
from typing import Optional, Tuple

import orjson
import pydantic

from harvester.errors import StoreError
from harvester.nutrition.models import NutrientRecord
from harvester.orchestrator.jobs import utcnow
from harvester.storage.db import to_db_time

CACHE_SCHEMA_VERSION = 1


class IngredientCache:
    """Last-write-wins cache; rows written under another schema version are invisible."""

    def __init__(self, connection: sqlite3.Connection, schema_version: int = CACHE_SCHEMA_VERSION) -> None:
        self._conn = connection
        self.schema_version = schema_version

    @staticmethod
    def _key(term: str) -> str:
        return term.strip().lower()

    def get(self, term: str) -> Optional[Tuple[NutrientRecord, str]]:
        try:
            row = self._conn.execute(
                "SELECT nutrition_json, source FROM ingredient_cache WHERE term = ? AND schema_version = ?",
                (self._key(term), self.schema_version),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"cache read failed for {term!r}: {exc}") from exc
        if row is None:
            return None
        try:
            record = NutrientRecord.model_validate(orjson.loads(row["nutrition_json"]))
        except (orjson.JSONDecodeError, pydantic.ValidationError):
            return None
        return record, row["source"]

    def put(self, term: str, record: NutrientRecord, source: str) -> None:
        try:
            self._conn.execute(
                "INSERT INTO ingredient_cache (term, schema_version, nutrition_json, source, updated_at)"
                " VALUES (?, ?, ?, ?, ?)"
                " ON CONFLICT(term, schema_version) DO UPDATE SET"
                " nutrition_json = excluded.nutrition_json, source = excluded.source,"
                " updated_at = excluded.updated_at",
                (
                    self._key(term),
                    self.schema_version,
                    orjson.dumps(record.model_dump(mode="json")).decode(),
                    source,
                    to_db_time(utcnow()),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"cache write failed for {term!r}: {exc}") from exc

    def clear(self) -> int:
        """Remove every entry, across all schema versions."""
        try:
            cursor = self._conn.execute("DELETE FROM ingredient_cache")
            self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"cache clear failed: {exc}") from exc
        return cursor.rowcount
