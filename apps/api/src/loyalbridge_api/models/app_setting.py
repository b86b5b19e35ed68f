"""Runtime key/value settings editable by operators."""

from sqlalchemy import JSON, Column, DateTime, String, func

from loyalbridge_api.db.base import Base


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
