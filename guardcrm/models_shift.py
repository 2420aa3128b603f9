"""
Shift Scheduling Models
"""
from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Shift(Base):
    __tablename__ = "shifts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)
    title = Column(String(255), nullable=False)
    client_name = Column(String(255), nullable=True)
    site_name = Column(String(255), nullable=True)
    site_address = Column(String(500), nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(30), default="unassigned", nullable=False, index=True)
    priority = Column(Integer, default=3, nullable=False)  # 1 (highest) .. 5
    assigned_guard_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    confirmed_at = Column(DateTime, nullable=True)
    required_certifications = Column(JSON, default=list)
    special_requirements = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    assigned_guard = relationship("User", foreign_keys=[assigned_guard_id])


class ShiftWorkflowHistory(Base):
    __tablename__ = "shift_workflow_history"

    id = Column(Integer, primary_key=True, index=True)
    shift_id = Column(Integer, ForeignKey("shifts.id", ondelete="CASCADE"), index=True, nullable=False)
    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=False)
    transition_reason = Column(Text, nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    transition_method = Column(String(20), default="manual", nullable=False)
    bulk_operation_id = Column(String(64), nullable=True, index=True)
    changed_at = Column(DateTime, server_default=func.now(), index=True)

    shift = relationship("Shift")


class ShiftUrgencyAlert(Base):
    __tablename__ = "shift_urgency_alerts"

    id = Column(Integer, primary_key=True, index=True)
    shift_id = Column(Integer, ForeignKey("shifts.id", ondelete="CASCADE"), index=True, nullable=False)
    alert_type = Column(String(30), nullable=False)  # unassigned_24h, unconfirmed_12h, certification_gap
    alert_priority = Column(String(10), nullable=False)  # low, medium, high, critical
    alert_status = Column(String(20), default="active", nullable=False)  # active, acknowledged, resolved
    hours_until_shift = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    escalation_level = Column(Integer, default=1, nullable=False)
    last_escalated_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)

    shift = relationship("Shift")


class GuardCertification(Base):
    __tablename__ = "guard_certifications"

    id = Column(Integer, primary_key=True, index=True)
    guard_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    certification_type = Column(String(100), nullable=False)
    certificate_number = Column(String(100), nullable=True)
    issued_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    last_reminder_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    guard = relationship("User")
