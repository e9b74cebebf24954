"""
Runtime configuration for the auction backend.

Values come from environment variables (a local .env file is loaded first),
the same variables the deployed service reads on its host.
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_IMAGE_URL = "https://via.placeholder.com/300"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Service settings"""
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: str = Field("auctions", description="MongoDB database name")
    discord_webhook_url: Optional[str] = Field(None, description="Channel webhook for auction events")
    frontend_url: str = Field("https://guerramundialz.github.io", description="Public site origin")
    auctions_page_path: str = Field("/subastas.html", description="Auction page linked from webhooks")
    cors_origins: List[str] = Field(default_factory=list)
    jwt_secret: Optional[str] = Field(None, description="HS256 secret for bearer tokens")
    admin_role_ids: List[str] = Field(default_factory=list, description="Discord role ids with admin rights")
    sweep_interval_seconds: int = Field(60, gt=0)
    webhook_timeout_seconds: float = Field(5.0, gt=0)
    notify_workers: int = Field(4, gt=0)
    notify_queue_limit: int = Field(1000, gt=0, description="Deliveries allowed to wait before events are dropped")
    currency_label: str = "Rublos"
    default_image_url: str = DEFAULT_IMAGE_URL
    log_level: str = "INFO"
    port: int = 8000
    run_scheduler: bool = True

    @property
    def auctions_page_url(self) -> str:
        return self.frontend_url.rstrip("/") + self.auctions_page_path


def load_settings() -> Settings:
    load_dotenv()
    frontend_url = os.getenv("FRONTEND_URL", "https://guerramundialz.github.io")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        database_name=os.getenv("DATABASE_NAME", "auctions"),
        discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL") or None,
        frontend_url=frontend_url,
        auctions_page_path=os.getenv("AUCTIONS_PAGE_PATH", "/subastas.html"),
        cors_origins=_split(os.getenv("CORS_ORIGINS")) or [frontend_url],
        jwt_secret=os.getenv("JWT_SECRET") or None,
        admin_role_ids=_split(os.getenv("ADMIN_ROLE_IDS")),
        sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", 60)),
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", 5)),
        notify_workers=int(os.getenv("NOTIFY_WORKERS", 4)),
        notify_queue_limit=int(os.getenv("NOTIFY_QUEUE_LIMIT", 1000)),
        currency_label=os.getenv("CURRENCY_LABEL", "Rublos"),
        default_image_url=os.getenv("DEFAULT_IMAGE_URL", DEFAULT_IMAGE_URL),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=int(os.getenv("PORT", 8000)),
        run_scheduler=_flag(os.getenv("RUN_SCHEDULER"), True),
    )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level.upper())
