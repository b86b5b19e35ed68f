import pytest
from sqlalchemy import func, select

from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.services.errors import LoyaltyValidationError
from loyalbridge_api.services.loyalty import IdentityResolver, normalize_email, normalize_phone


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("5551234567", "+15551234567"),
        ("(555) 123-4567", "+15551234567"),
        ("15551234567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+447700900123", "+447700900123"),
        ("  +15551234567 ", "+15551234567"),
        ("+1 (555) 123-4567", "+15551234567"),
        ("+1 555-123-4567", "+15551234567"),
        ("25551234567", "+25551234567"),
        ("12345", "+12345"),
    ],
)
def test_normalize_phone(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


def test_normalize_email_lowercases_and_trims() -> None:
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"


@pytest.mark.asyncio
async def test_resolve_returns_same_profile_for_email_with_different_phone(session_factory) -> None:
    async with session_factory() as session:
        resolver = IdentityResolver(session)
        first = await resolver.resolve(email="jane@example.com", phone="5551234567")
        second = await resolver.resolve(email="JANE@example.com", phone="5559876543")
        await session.commit()

        assert first.id == second.id
        # Existing phone is kept, not overwritten
        assert second.phone == "+15551234567"


@pytest.mark.asyncio
async def test_resolve_returns_same_profile_for_phone_with_different_email(session_factory) -> None:
    async with session_factory() as session:
        resolver = IdentityResolver(session)
        first = await resolver.resolve(phone="(555) 123-4567")
        second = await resolver.resolve(phone="+15551234567", email="new@example.com")
        await session.commit()

        assert first.id == second.id
        assert second.email == "new@example.com"

        count = await session.scalar(select(func.count()).select_from(CustomerProfile))
        assert count == 1


@pytest.mark.asyncio
async def test_formatted_international_phone_matches_bare_number(session_factory) -> None:
    async with session_factory() as session:
        resolver = IdentityResolver(session)
        first = await resolver.resolve(phone="5551234567")
        second = await resolver.resolve(phone="+1 555-123-4567")
        await session.commit()

        assert first.id == second.id
        assert second.phone == "+15551234567"


@pytest.mark.asyncio
async def test_shopify_id_takes_precedence_over_email(session_factory) -> None:
    async with session_factory() as session:
        resolver = IdentityResolver(session)
        by_email = await resolver.resolve(email="a@example.com")
        by_shopify = await resolver.resolve(shopify_customer_id="7001", email="b@example.com")
        again = await resolver.resolve(shopify_customer_id="7001", email="a@example.com")

        assert by_email.id != by_shopify.id
        assert again.id == by_shopify.id


@pytest.mark.asyncio
async def test_resolve_requires_an_identifier(session_factory) -> None:
    async with session_factory() as session:
        resolver = IdentityResolver(session)
        with pytest.raises(LoyaltyValidationError):
            await resolver.resolve(phone="  ", email=None, first_name="Jane")

        count = await session.scalar(select(func.count()).select_from(CustomerProfile))
        assert count == 0
