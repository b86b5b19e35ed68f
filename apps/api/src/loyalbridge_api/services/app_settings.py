"""Runtime Square environment selection stored in ``app_settings``."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalbridge_api.core.settings import Settings
from loyalbridge_api.models.app_setting import AppSetting


SQUARE_ENVIRONMENT_KEY = "square_environment"

SquareEnvironment = Literal["sandbox", "production"]


@dataclass(slots=True)
class SquareTarget:
    environment: SquareEnvironment
    base_url: str


def coerce_environment(raw: Any) -> SquareEnvironment:
    """Anything other than ``production`` (plain or JSON-encoded) is sandbox."""

    value = raw
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            pass
    if isinstance(value, str) and value.strip().lower() == "production":
        return "production"
    return "sandbox"


class AppSettingsService:
    def __init__(self, db_session: AsyncSession, settings: Settings) -> None:
        self._session = db_session
        self._settings = settings

    async def get_value(self, key: str) -> Any:
        result = await self._session.execute(select(AppSetting.value).where(AppSetting.key == key))
        return result.scalar_one_or_none()

    async def resolve_square_target(self) -> SquareTarget:
        raw = await self.get_value(SQUARE_ENVIRONMENT_KEY)
        environment = coerce_environment(raw if raw is not None else self._settings.square_default_environment)
        base_url = (
            self._settings.square_production_base_url
            if environment == "production"
            else self._settings.square_sandbox_base_url
        )
        return SquareTarget(environment=environment, base_url=base_url)


__all__ = ["AppSettingsService", "SquareTarget", "coerce_environment"]
