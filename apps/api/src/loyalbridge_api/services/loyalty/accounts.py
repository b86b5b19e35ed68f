"""Bind customer profiles to Square loyalty accounts and keep the mirror current."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select

from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyReward
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.schemas.square import SquareLoyaltyAccount
from loyalbridge_api.services.errors import LoyaltyValidationError, UpstreamError, UpstreamTimeoutError

from .context import LoyaltyContext
from .eligibility import affordable_rewards
from .identity import normalize_phone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_account_ref(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


@dataclass(slots=True)
class BoundAccount:
    account: LoyaltyAccount
    available_rewards: list[LoyaltyReward]
    created: bool


@dataclass(slots=True)
class PhoneLookup:
    """Square account found by phone mapping, plus the local mirror when one exists."""

    square_account: SquareLoyaltyAccount
    account: LoyaltyAccount | None


class LoyaltyAccountBinder:
    def __init__(self, context: LoyaltyContext) -> None:
        self._context = context
        self._session = context.session
        self._square = context.square
        self._store = get_loyalty_store()

    async def get_account(self, account_ref: str, *, for_update: bool = False) -> LoyaltyAccount | None:
        """Load by internal UUID or by Square loyalty account id."""

        internal_id = _parse_account_ref(account_ref)
        if internal_id is not None:
            stmt = select(LoyaltyAccount).where(LoyaltyAccount.id == internal_id)
        else:
            stmt = select(LoyaltyAccount).where(LoyaltyAccount.square_loyalty_account_id == account_ref)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self._session.execute(stmt)).scalars().first()

    async def get_for_profile(self, profile: CustomerProfile) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.profile_id == profile.id)
        return (await self._session.execute(stmt)).scalars().first()

    async def list_available_rewards(self, account: LoyaltyAccount) -> list[LoyaltyReward]:
        stmt = select(LoyaltyReward).where(LoyaltyReward.is_active.is_(True))
        rewards = (await self._session.execute(stmt)).scalars().all()
        return affordable_rewards(rewards, account.balance)

    async def bind(self, profile: CustomerProfile, *, phone: str | None = None) -> BoundAccount:
        existing = await self.get_for_profile(profile)
        if existing is not None:
            # Cached balance is served as is; /balance forces a refresh
            return BoundAccount(
                account=existing,
                available_rewards=await self.list_available_rewards(existing),
                created=False,
            )

        phone_value = normalize_phone(phone) if phone else profile.phone

        square_account = await self._find_square_account(profile, phone_value)
        if square_account is not None:
            account = await self._mirror(profile, square_account)
            logger.info(
                "Linked existing Square loyalty account",
                profile_id=str(profile.id),
                square_loyalty_account_id=square_account.id,
            )
            return BoundAccount(
                account=account,
                available_rewards=await self.list_available_rewards(account),
                created=False,
            )

        if not phone_value:
            raise LoyaltyValidationError("Phone number is required to create loyalty account")

        square_account = await self._enroll(profile, phone_value)
        account = await self._mirror(profile, square_account)
        logger.info(
            "Enrolled customer in Square loyalty",
            profile_id=str(profile.id),
            square_loyalty_account_id=square_account.id,
        )
        return BoundAccount(
            account=account,
            available_rewards=await self.list_available_rewards(account),
            created=True,
        )

    async def lookup_by_phone(self, phone: str) -> PhoneLookup | None:
        phone_value = normalize_phone(phone)
        matches = await self._square.search_loyalty_accounts(phone=phone_value)
        if not matches:
            return None
        square_account = matches[0]
        account = await self.get_account(square_account.id)
        if account is not None:
            self._apply_square_state(account, square_account)
            await self._session.flush()
        return PhoneLookup(square_account=square_account, account=account)

    async def resync(self, account: LoyaltyAccount) -> LoyaltyAccount:
        """Overwrite the cached balance with Square's authoritative value."""

        square_account = await self._square.retrieve_loyalty_account(account.square_loyalty_account_id)
        self._apply_square_state(account, square_account)
        await self._session.flush()
        logger.info(
            "Resynced loyalty balance",
            account_id=str(account.id),
            balance=account.balance,
        )
        return account

    async def _find_square_account(
        self,
        profile: CustomerProfile,
        phone: str | None,
    ) -> SquareLoyaltyAccount | None:
        customer_id = await self._resolve_square_customer_id(profile, phone)
        if customer_id:
            matches = await self._square.search_loyalty_accounts(customer_ids=[customer_id])
            if matches:
                return matches[0]
        if phone:
            matches = await self._square.search_loyalty_accounts(phone=phone)
            if matches:
                return matches[0]
        return None

    async def _resolve_square_customer_id(self, profile: CustomerProfile, phone: str | None) -> str | None:
        if profile.square_customer_id:
            return profile.square_customer_id

        customers = []
        if phone:
            customers = await self._square.search_customers(phone=phone)
        if not customers and profile.email:
            customers = await self._square.search_customers(email=profile.email)
        if not customers:
            return None

        customer_id = customers[0].id
        await self._remember_square_customer(profile, customer_id)
        return customer_id

    async def _remember_square_customer(self, profile: CustomerProfile, customer_id: str) -> None:
        stmt = select(CustomerProfile.id).where(CustomerProfile.square_customer_id == customer_id)
        owner = (await self._session.execute(stmt)).scalar_one_or_none()
        if owner is not None and owner != profile.id:
            logger.warning(
                "Square customer already linked to another profile",
                profile_id=str(profile.id),
                owner_profile_id=str(owner),
            )
            return
        profile.square_customer_id = customer_id
        await self._session.flush()

    async def _enroll(self, profile: CustomerProfile, phone: str) -> SquareLoyaltyAccount:
        customer_id = profile.square_customer_id
        if not customer_id:
            try:
                customer = await self._square.create_customer(
                    idempotency_key=f"customer-{profile.id}",
                    phone=phone,
                    email=profile.email,
                    given_name=profile.first_name,
                    family_name=profile.last_name,
                )
            except UpstreamTimeoutError:
                self._store.record_upstream_failure("square", "create_customer")
                raise
            except UpstreamError as exc:
                self._store.record_upstream_failure("square", "create_customer")
                raise UpstreamError(
                    "Failed to create customer profile",
                    service="square",
                    upstream_status=exc.upstream_status,
                    body=exc.body,
                    status_code=exc.status_code if exc.status_code >= 500 else 400,
                ) from exc
            customer_id = customer.id
            await self._remember_square_customer(profile, customer_id)

        try:
            program_id = await self._context.program_id()
            return await self._square.create_loyalty_account(
                program_id=program_id,
                phone=phone,
                idempotency_key=f"loyalty-{customer_id}-{uuid4().hex}",
            )
        except UpstreamTimeoutError:
            self._store.record_upstream_failure("square", "create_loyalty_account")
            raise
        except UpstreamError as exc:
            self._store.record_upstream_failure("square", "create_loyalty_account")
            raise UpstreamError(
                "Failed to create loyalty account",
                service="square",
                upstream_status=exc.upstream_status,
                body=exc.body,
                status_code=exc.status_code if exc.status_code >= 500 else 400,
            ) from exc

    async def _mirror(self, profile: CustomerProfile, square_account: SquareLoyaltyAccount) -> LoyaltyAccount:
        account = await self.get_account(square_account.id)
        if account is None:
            account = LoyaltyAccount(
                profile_id=profile.id,
                square_loyalty_account_id=square_account.id,
            )
            self._session.add(account)
        elif account.profile_id != profile.id:
            logger.warning(
                "Square loyalty account already mirrored for another profile",
                profile_id=str(profile.id),
                owner_profile_id=str(account.profile_id),
            )
        self._apply_square_state(account, square_account)
        await self._session.flush()
        return account

    @staticmethod
    def _apply_square_state(account: LoyaltyAccount, square_account: SquareLoyaltyAccount) -> None:
        account.balance = max(square_account.balance, 0)
        account.lifetime_points = square_account.lifetime_points
        if square_account.program_id:
            account.program_id = square_account.program_id
        account.last_synced_at = _utcnow()


__all__ = ["BoundAccount", "LoyaltyAccountBinder", "PhoneLookup"]
