"""
Security and system event models.

WHAT: SecurityEvent is an append-only log of webhook and payment security
decisions; SystemEvent rows are dashboard refresh pings.

WHY: Inserting a SystemEvent is picked up by Supabase Realtime, so a
refresh written by the backend reaches every open dashboard for that
business.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from boinvit.models.base import Base, JSONType, PrimaryKeyMixin


class SecurityEvent(Base, PrimaryKeyMixin):
    """Immutable record of a security-relevant decision."""

    __tablename__ = "security_events"

    event_type = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=True)
    severity = Column(String(16), nullable=False, default="low")
    meta = Column("metadata", JSONType, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<SecurityEvent(type={self.event_type}, severity={self.severity})>"


class SystemEvent(Base, PrimaryKeyMixin):
    """Dashboard refresh ping broadcast through Realtime."""

    __tablename__ = "system_events"

    event_type = Column(String(64), nullable=False)
    business_id = Column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=True, index=True
    )
    meta = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
