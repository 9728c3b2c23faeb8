"""ChallengeSession model"""
from sqlalchemy import Column, Integer, String, UniqueConstraint
from payhook.models.base import Base


class ChallengeSession(Base):
    """Bundle membership: sessions included in a challenge (owned by the catalog)"""
    __tablename__ = "challenge_sessions"

    id = Column(Integer, primary_key=True, index=True)
    challenge_id = Column(String(64), nullable=False, index=True)
    session_id = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint('challenge_id', 'session_id', name='uq_challenge_sessions_pair'),
    )
