"""Customer identity shared between Shopify and Square."""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalbridge_api.db.base import Base


class CustomerProfile(Base):
    """One person, keyed by whichever of Shopify id, email or phone is known."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint(
            "shopify_customer_id IS NOT NULL OR email IS NOT NULL OR phone IS NOT NULL",
            name="ck_profiles_has_identifier",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shopify_customer_id = Column(String, nullable=True, unique=True)
    square_customer_id = Column(String, nullable=True, unique=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    loyalty_account = relationship(
        "LoyaltyAccount",
        back_populates="profile",
        uselist=False,
        cascade="all, delete-orphan",
    )
