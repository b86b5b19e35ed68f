"""Customer identity resolution across Shopify ids, emails and phones."""

from __future__ import annotations

import re

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.services.errors import LoyaltyValidationError


_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str) -> str:
    """Normalize a phone number to E.164, assuming North America for bare numbers."""

    trimmed = raw.strip()
    digits = _NON_DIGITS.sub("", trimmed)
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    if trimmed.startswith("+"):
        return trimmed
    return f"+{digits}"


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


class IdentityResolver:
    """Find or create the profile for whatever identifiers a caller presents."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._session = db_session

    async def resolve(
        self,
        *,
        phone: str | None = None,
        email: str | None = None,
        shopify_customer_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> CustomerProfile:
        shopify_id = _clean(shopify_customer_id)
        email_value = normalize_email(email) if _clean(email) else None
        phone_value = normalize_phone(phone) if _clean(phone) else None

        if not (shopify_id or email_value or phone_value):
            raise LoyaltyValidationError("Phone, email or Shopify customer id is required")

        profile = await self.find(shopify_customer_id=shopify_id, email=email_value, phone=phone_value)
        if profile is None:
            profile = CustomerProfile(
                shopify_customer_id=shopify_id,
                email=email_value,
                phone=phone_value,
                first_name=_clean(first_name),
                last_name=_clean(last_name),
            )
            self._session.add(profile)
            await self._session.flush()
            logger.info(
                "Created customer profile",
                profile_id=str(profile.id),
                has_shopify_id=bool(shopify_id),
                has_email=bool(email_value),
                has_phone=bool(phone_value),
            )
            return profile

        # Fill gaps without overwriting identifiers the profile already has
        changed = False
        for attribute, value in (
            ("shopify_customer_id", shopify_id),
            ("email", email_value),
            ("phone", phone_value),
            ("first_name", _clean(first_name)),
            ("last_name", _clean(last_name)),
        ):
            if value and getattr(profile, attribute) is None:
                setattr(profile, attribute, value)
                changed = True
        if changed:
            await self._session.flush()
        return profile

    async def find(
        self,
        *,
        shopify_customer_id: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> CustomerProfile | None:
        """First match in order: Shopify id, email, phone. Inputs must be normalized."""

        lookups = (
            (CustomerProfile.shopify_customer_id, shopify_customer_id),
            (CustomerProfile.email, email),
            (CustomerProfile.phone, phone),
        )
        for column, value in lookups:
            if not value:
                continue
            stmt = select(CustomerProfile).where(column == value).order_by(CustomerProfile.created_at).limit(1)
            profile = (await self._session.execute(stmt)).scalars().first()
            if profile is not None:
                return profile
        return None


__all__ = ["IdentityResolver", "normalize_email", "normalize_phone"]
