# models.py
# Blueprints for the telemetry tables: the mirrored domain registry, the
# visitor sessions correlated from client keys, and the append-only events.

import uuid
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, Index, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .core.database import Base


class Domain(Base):
    """
    Blueprint for the 'domains' table.
    A read-only mirror of the external domain registry; this core never edits it.
    """
    __tablename__ = "domains"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    domain = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    # Opaque id of the owning account, only consulted by the default scope resolver
    owner_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sessions = relationship("TrackingSession", back_populates="domain_owner")


class TrackingSession(Base):
    """
    Blueprint for the 'tracking_sessions' table.
    One row per client-generated session key; see SessionCorrelator for the lifecycle.
    """
    __tablename__ = "tracking_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    session_id = Column(String, unique=True, nullable=False, index=True)

    domain_id = Column(Uuid(as_uuid=True), ForeignKey("domains.id"), nullable=False, index=True)
    domain = Column(String, nullable=False, index=True)

    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)

    # Session timing
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    last_activity = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)

    page_count = Column(Integer, nullable=False, default=1)
    last_page = Column(Text, nullable=True)
    exit_page = Column(Text, nullable=True, index=True)
    duration = Column(Integer, nullable=True)  # whole seconds
    is_active = Column(Boolean, nullable=False, default=True)

    # Optimistic concurrency counter, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    domain_owner = relationship("Domain", back_populates="sessions")
    events = relationship("TrackingEvent", back_populates="session", order_by="TrackingEvent.timestamp")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_tracking_session_domain_start", "domain_id", "start_time"),
    )


class TrackingEvent(Base):
    """
    Blueprint for the 'tracking_events' table.
    Append-only; rows reference the session's internal id, not the client key.
    """
    __tablename__ = "tracking_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    session_pk = Column(Uuid(as_uuid=True), ForeignKey("tracking_sessions.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    page = Column(Text, nullable=False)
    element = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("TrackingSession", back_populates="events")

    __table_args__ = (
        Index("idx_tracking_event_session_type", "session_pk", "event_type"),
    )
