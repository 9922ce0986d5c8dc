"""SQL-backed lookups into data owned by other parts of the platform.

The booking core only reads users, providers and listings; the single write
here is the admin-facing system setting upsert.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from marketplace.domain.models import (
    User, Provider, ProviderService, CatalogService, SystemSetting, utcnow,
)


class DirectoryRepository:
    """User and provider lookups."""

    def __init__(self, db: Session):
        self.db = db

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_provider(self, provider_id: int) -> Optional[Provider]:
        return self.db.get(Provider, provider_id)

    def get_provider_by_user_id(self, user_id: int) -> Optional[Provider]:
        return self.db.scalars(
            select(Provider).where(Provider.user_id == user_id).limit(1)
        ).first()


class CatalogRepository:
    """Listing lookups used for pricing and provider resolution."""

    def __init__(self, db: Session):
        self.db = db

    def get_provider_service(self, provider_service_id: int) -> Optional[ProviderService]:
        return self.db.get(ProviderService, provider_service_id)

    def get_catalog_service(self, catalog_service_id: int) -> Optional[CatalogService]:
        return self.db.get(CatalogService, catalog_service_id)


class SettingsRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_system_setting(self, key: str) -> Optional[SystemSetting]:
        return self.db.scalars(
            select(SystemSetting).where(SystemSetting.key == key).limit(1)
        ).first()

    def set_system_setting(self, key: str, value: str, description: Optional[str] = None) -> SystemSetting:
        """Insert or update a setting. Caller owns the commit."""
        setting = self.get_system_setting(key)
        if setting is None:
            setting = SystemSetting(key=key, value=value, description=description)
            self.db.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description
            setting.updated_at = utcnow()
        self.db.flush()
        return setting
