"""AppUser model"""
from sqlalchemy import Column, String, DateTime
from datetime import datetime, timezone
from payhook.models.base import Base


class AppUser(Base):
    """User directory (owned by the auth service; read here for receipt addresses)"""
    __tablename__ = "app_users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
