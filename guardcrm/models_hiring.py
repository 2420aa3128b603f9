"""
Hiring Pipeline Models
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class GuardApplication(Base):
    __tablename__ = "guard_applications"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)

    pipeline_stage = Column(String(50), default="application_received", nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    priority = Column(Integer, default=5, nullable=False)  # 1 (critical) .. 10
    stage_changed_at = Column(DateTime, server_default=func.now())
    stage_changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    workflow_notes = Column(Text, nullable=True)

    # Sensitive fields (ssn, date_of_birth, driver_license) are stored as encrypted envelopes
    application_data = Column(JSON, default=dict)
    application_reference = Column(String(50), unique=True, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    comments = relationship(
        "ApplicationComment", back_populates="application", cascade="all, delete-orphan"
    )


class ApplicationComment(Base):
    __tablename__ = "application_comments"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(
        Integer, ForeignKey("guard_applications.id", ondelete="CASCADE"), index=True, nullable=False
    )
    author_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # None for system comments
    comment_text = Column(Text, nullable=False)
    comment_type = Column(String(30), default="general", nullable=False)
    parent_comment_id = Column(Integer, ForeignKey("application_comments.id"), nullable=True)
    mentions = Column(JSON, default=list)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    application = relationship("GuardApplication", back_populates="comments")


class StageHistory(Base):
    __tablename__ = "application_stage_history"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(
        Integer, ForeignKey("guard_applications.id", ondelete="CASCADE"), index=True, nullable=False
    )
    from_stage = Column(String(50), nullable=True)
    to_stage = Column(String(50), nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    changed_at = Column(DateTime, server_default=func.now())
