"""Typed settings loaded from ``config/settings.toml`` and the environment."""
from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


class AppSettings(BaseModel):
    data_root: Path = Path("data")
    database: Path = Path("data/harvester.db")
    checkpoint_dir: Path = Path("data/checkpoints")
    metrics_dir: Path = Path("data/metrics")


class FetchSettings(BaseModel):
    user_agent: str = "Mozilla/5.0 (compatible; recipe-harvester/0.1)"
    timeout_seconds: float = 30.0
    image_timeout_seconds: float = 5.0


class CrawlSettings(BaseModel):
    """Politeness and budget knobs for a single crawl session."""

    min_delay_seconds: float = 1.0
    max_delay_seconds: float = 3.0
    retry_extra_delay_seconds: float = 5.0
    concurrency: int = Field(default=2, gt=0)
    retry_concurrency: int = Field(default=1, gt=0)
    max_request_retries: int = Field(default=3, ge=0)
    retry_max_request_retries: int = Field(default=5, ge=0)
    max_pages: int = Field(default=500, gt=0)
    respect_robots: bool = True
    cooldown_hours: float = Field(default=24.0, gt=0)
    excluded_paths: List[str] = Field(
        default_factory=lambda: ["about", "contact", "privacy-policy", "login", "cart"]
    )
    priority_globs: List[str] = Field(default_factory=lambda: ["**/recipe/**", "**/*recipe*"])
    priority_selector: str = "a.entry-title-link, .entry-title a, article a, .post-summary a, .pagination a"
    dom_rules_path: Optional[Path] = None


class WorkerSettings(BaseModel):
    base_poll_seconds: float = Field(default=5.0, gt=0)
    max_poll_seconds: float = Field(default=60.0, gt=0)
    backoff_factor: float = Field(default=1.5, ge=1.0)
    max_jitter_seconds: float = Field(default=2.0, ge=0)


class AuditorSettings(BaseModel):
    batch_size: int = Field(default=10, gt=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)


class QualitySettings(BaseModel):
    """Ingestion and standing-quality bars are deliberately separate values."""

    ingestion_threshold: int = 60
    standing_threshold: int = 80
    repair_cap: int = 2


class NutritionSettings(BaseModel):
    providers: List[str] = Field(default_factory=lambda: ["usda", "fatsecret"])
    usda_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    usda_page_size: int = 25
    cache_schema_version: int = 1
    fatsecret_token_url: str = "https://oauth.fatsecret.com/connect/token"
    fatsecret_api_url: str = "https://platform.fatsecret.com/rest/server.api"
    timeout_seconds: float = 15.0
    usda_api_key: Optional[str] = None
    fatsecret_client_id: Optional[str] = None
    fatsecret_client_secret: Optional[str] = None


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    auditor: AuditorSettings = Field(default_factory=AuditorSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    nutrition: NutritionSettings = Field(default_factory=NutritionSettings)
    instance_id: str = "default"


def _apply_environment(settings: Settings) -> Settings:
    nutrition = settings.nutrition
    nutrition.usda_api_key = os.getenv("USDA_API_KEY") or nutrition.usda_api_key
    nutrition.fatsecret_client_id = os.getenv("FATSECRET_CLIENT_ID") or nutrition.fatsecret_client_id
    nutrition.fatsecret_client_secret = os.getenv("FATSECRET_CLIENT_SECRET") or nutrition.fatsecret_client_secret
    settings.instance_id = os.getenv("INSTANCE_ID", settings.instance_id)
    return settings


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Read the TOML configuration file, falling back to defaults when absent."""
    payload = {}
    if path.exists():
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
    return _apply_environment(Settings.model_validate(payload))
