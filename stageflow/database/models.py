from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from .db import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False, default="")
    pipeline_template = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    deals = relationship("DealRecord", back_populates="organization")


class DealRecord(Base):
    __tablename__ = "deals"
    __table_args__ = (
        Index("idx_deals_org_stage", "organization_id", "stage"),
        Index("idx_deals_status", "status"),
    )

    id = Column(String(64), primary_key=True)
    organization_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    client = Column(String, default="")
    stage = Column(String(50), default="lead")
    status = Column(String(20), default="active")
    value = Column(Float)
    confidence = Column(Float)
    probability = Column(Float)
    assigned_to = Column(String(64))
    user_id = Column(String(64))
    company = Column(String)
    email = Column(String)
    phone = Column(String)
    notes = Column(Text)
    expected_close = Column(String(32))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    last_activity = Column(DateTime)

    lost_reason = Column(String)
    lost_reason_notes = Column(Text)
    disqualified_reason_category = Column(String(40))
    disqualified_reason_notes = Column(Text)
    stage_at_disqualification = Column(String(50))
    disqualified_at = Column(DateTime)
    disqualified_by = Column(String(64))
    outcome_reason_category = Column(String(40))
    outcome_notes = Column(Text)
    outcome_recorded_at = Column(DateTime)
    outcome_recorded_by = Column(String(64))

    organization = relationship("Organization", back_populates="deals")
