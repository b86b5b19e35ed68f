"""Keyword rules that tag Shopify products for loyalty collections."""

from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from loyalbridge_api.db.base import Base


class ProductMapping(Base):
    __tablename__ = "product_mappings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    product_name = Column(String, nullable=False)
    shopify_tag = Column(String, nullable=False)
    mapping_type = Column(String, nullable=True)
    # Empty means match on product_name itself
    keywords = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def match_terms(self) -> list[str]:
        terms = [str(term).strip().lower() for term in (self.keywords or []) if str(term).strip()]
        return terms or [self.product_name.strip().lower()]
