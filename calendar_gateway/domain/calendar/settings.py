"""Settings Provider - calendar name, timezone, contact data and feed limits"""

import abc
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ... import config
from ...models import CalendarSetting
from .schemas import CalendarSettings, CalendarSettingsUpdate

logger = logging.getLogger(__name__)

# calendar_settings.setting_key -> CalendarSettings attribute
SETTING_KEYS = {
    "calendar_name": "name",
    "calendar_description": "description",
    "calendar_timezone": "timezone",
    "calendar_contact_email": "contact_email",
    "calendar_contact_phone": "contact_phone",
    "calendar_website": "website",
    "calendar_location": "location",
    "calendar_refresh_interval": "refresh_interval",
    "calendar_max_events": "max_events",
}
INTEGER_SETTINGS = {"refresh_interval", "max_events"}


def default_settings() -> CalendarSettings:
    """Built-in defaults, used whenever no provider (or a failing one) is configured"""
    return CalendarSettings(
        name=config.CALENDAR_NAME,
        description=config.CALENDAR_DESCRIPTION,
        timezone=config.CALENDAR_TIMEZONE,
        refresh_interval=config.CALENDAR_REFRESH_INTERVAL,
        max_events=config.CALENDAR_MAX_EVENTS,
    )


def resolve_settings(provider: Optional["SettingsProvider"]) -> CalendarSettings:
    """Ask the provider for settings, never failing the request"""
    if provider is None:
        return default_settings()
    try:
        return provider.get_settings()
    except Exception as e:
        logger.warning(f"⚠️ Calendar settings unavailable, using defaults: {e}")
        return default_settings()


class SettingsProvider(abc.ABC):
    @abc.abstractmethod
    def get_settings(self) -> CalendarSettings:
        ...


class StaticSettingsProvider(SettingsProvider):
    """Fixed settings, e.g. for the standalone deployment or tests"""

    def __init__(self, settings: Optional[CalendarSettings] = None):
        self.settings = settings or default_settings()

    def get_settings(self) -> CalendarSettings:
        return self.settings


class SqlSettingsProvider(SettingsProvider):
    """Reads the calendar_settings key/value table, filling gaps with defaults"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_settings(self) -> CalendarSettings:
        db = self.session_factory()
        try:
            rows = db.query(CalendarSetting).all()
        finally:
            db.close()

        values = default_settings().model_dump()
        for row in rows:
            attr = SETTING_KEYS.get(row.setting_key)
            if attr is None:
                continue
            if attr in INTEGER_SETTINGS:
                try:
                    number = int(row.setting_value)
                except (TypeError, ValueError):
                    logger.warning(f"⚠️ Ignoring non-numeric setting {row.setting_key}")
                    continue
                if number > 0:
                    values[attr] = number
            else:
                values[attr] = row.setting_value
        return CalendarSettings(**values)

    def update_settings(self, update: CalendarSettingsUpdate) -> CalendarSettings:
        """Upsert every provided key and return the effective settings"""
        changes = update.model_dump(exclude_none=True)
        db = self.session_factory()
        try:
            for key, value in changes.items():
                row = db.query(CalendarSetting).filter(CalendarSetting.setting_key == key).first()
                if row:
                    row.setting_value = value.strip()
                else:
                    db.add(CalendarSetting(setting_key=key, setting_value=value.strip()))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info(f"✅ Calendar settings updated: {sorted(changes)}")
        return self.get_settings()
