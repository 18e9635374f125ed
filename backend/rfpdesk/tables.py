# tables.py
# SQLAlchemy tables for RFPs, vendors, the send fan-out, proposals and chat.

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RfpStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Role(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class RFP(Base):
    __tablename__ = "rfps"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(Enum(RfpStatus), nullable=False, default=RfpStatus.DRAFT)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    vendors = relationship("RfpVendor", back_populates="rfp")
    proposals = relationship("Proposal", back_populates="rfp")
    session = relationship("ChatSession", back_populates="rfp", uselist=False)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    # stored lower-cased; unique comparison key
    email = Column(String, nullable=False, unique=True, index=True)


class RfpVendor(Base):
    __tablename__ = "rfp_vendors"

    rfp_id = Column(String(36), ForeignKey("rfps.id"), primary_key=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), primary_key=True)

    rfp = relationship("RFP", back_populates="vendors")
    vendor = relationship("Vendor")


class Proposal(Base):
    __tablename__ = "proposals"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_proposal_rfp_vendor"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    rfp_id = Column(String(36), ForeignKey("rfps.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False)

    price = Column(Float, nullable=True)
    delivery_days = Column(Integer, nullable=True)
    warranty = Column(Text, nullable=True)
    payment_terms = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)
    ai_score = Column(Float, nullable=False, default=0.0)
    raw_email_body = Column(Text, nullable=False, default="")

    # first-contact provenance, never overwritten
    email_from = Column(String, nullable=False)
    email_subject = Column(String, nullable=True)
    attachments = Column(JSON, nullable=False, default=list)

    status = Column(String, nullable=False, default="RECEIVED")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    rfp = relationship("RFP", back_populates="proposals")
    vendor = relationship("Vendor")


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    rfp_id = Column(String(36), ForeignKey("rfps.id"), nullable=True, unique=True)

    rfp = relationship("RFP", back_populates="session")
    messages = relationship(
        "ChatMessage", back_populates="session",
        order_by=lambda: [ChatMessage.created_at, ChatMessage.id],
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("chat_sessions.id"), nullable=False, index=True)
    role = Column(Enum(Role), nullable=False)
    content = Column(Text, nullable=False)
    is_rfp = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    session = relationship("ChatSession", back_populates="messages")
