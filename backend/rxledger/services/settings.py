"""
SettingsService: key-value configuration distribution.

Holds contract addresses/ABIs and the content store URL so deployments can
be repointed without redeploying clients.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session as DbSession

from rxledger.db.postgres import get_db_session
from rxledger.models import Setting


class SettingsService:
    """Read/write access to the settings table."""

    def __init__(self, db_session: Optional[DbSession] = None):
        self._explicit_db = db_session
        self.logger = logging.getLogger("service.SettingsService")

    @property
    def db(self) -> DbSession:
        if self._explicit_db is not None:
            return self._explicit_db
        return get_db_session()

    def get(self, key: str) -> Optional[str]:
        setting = self.db.get(Setting, key)
        return setting.value if setting else None

    def put(self, key: str, value: Optional[str]) -> Setting:
        """Insert or replace a setting."""
        if not key:
            raise ValueError("key is required")

        db = self.db
        setting = db.get(Setting, key)
        if setting is None:
            setting = Setting(key=key, value=value)
            db.add(setting)
        else:
            setting.value = value
        db.commit()
        self.logger.info(f"Setting updated: {key}")
        return setting


# Singleton
_settings_service: Optional[SettingsService] = None


def get_settings_service() -> SettingsService:
    """Get the settings service singleton."""
    global _settings_service
    if _settings_service is None:
        _settings_service = SettingsService()
    return _settings_service
