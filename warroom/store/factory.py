"""Pick the incident store backend from settings."""

import logging

from warroom.config import Settings, get_settings, is_hosted_store_configured
from warroom.store.base import IncidentStore
from warroom.store.inert import InertIncidentStore
from warroom.store.sqlite import SqliteIncidentStore
from warroom.store.supabase import SupabaseIncidentStore

logger = logging.getLogger(__name__)


def get_store(settings: Settings | None = None) -> IncidentStore:
    """Build the configured store: hosted first, then local SQLite, else inert."""
    settings = settings or get_settings()
    if is_hosted_store_configured(settings):
        logger.info("Using hosted incident store at %s", settings.supabase_url)
        return SupabaseIncidentStore(settings.supabase_url, settings.supabase_anon_key)
    if settings.store_db_path:
        logger.info("Using SQLite incident store at %s", settings.store_db_path)
        return SqliteIncidentStore(settings.store_db_path)
    logger.warning("No incident store configured, running with an inert store")
    return InertIncidentStore()
