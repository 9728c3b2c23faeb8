"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from payhook.models.base import Base
from payhook.models.webhook_event import WebhookEvent
from payhook.models.transaction import Transaction
from payhook.models.attendance import Attendance
from payhook.models.challenge_session import ChallengeSession
from payhook.models.app_user import AppUser

# Export all for convenience
__all__ = [
    "Base", "WebhookEvent", "Transaction", "Attendance",
    "ChallengeSession", "AppUser"
]
