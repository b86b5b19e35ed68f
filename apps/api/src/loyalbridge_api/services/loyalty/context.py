"""Request-scoped collaborators shared by the loyalty workflows."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from loyalbridge_api.core.settings import Settings
from loyalbridge_api.services.shopify.client import ShopifyClient
from loyalbridge_api.services.square.client import SquareClient


MAIN_PROGRAM_ALIAS = "main"


@dataclass
class LoyaltyContext:
    """Everything one request needs; nothing here outlives the request."""

    session: AsyncSession
    square: SquareClient
    shopify: ShopifyClient
    settings: Settings
    _program_id: str | None = field(default=None, init=False, repr=False)

    @property
    def environment(self) -> str:
        return self.square.environment

    async def program_id(self) -> str:
        """Concrete Square program id, resolving the ``main`` alias once per request."""

        if self._program_id is None:
            configured = self.settings.square_loyalty_program_id
            if configured == MAIN_PROGRAM_ALIAS:
                program = await self.square.retrieve_program(MAIN_PROGRAM_ALIAS)
                self._program_id = program.id
            else:
                self._program_id = configured
        return self._program_id
