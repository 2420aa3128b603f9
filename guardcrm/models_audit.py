"""
Audit Trail and Retention Models
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=True, index=True)
    previous_state = Column(JSON, nullable=True)
    new_state = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    signature = Column(String(64), nullable=False)  # HMAC-SHA256 hex over the canonical record
    is_system_generated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)


class ArchivedAuditLog(Base):
    __tablename__ = "archived_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    original_id = Column(Integer, nullable=False, index=True)
    organization_id = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    original_created_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, server_default=func.now())


class RetentionPolicy(Base):
    __tablename__ = "retention_policies"
    __table_args__ = (UniqueConstraint("organization_id", "entity_type"),)

    id = Column(Integer, primary_key=True, index=True)
    # NULL organization_id is the platform default; tenant rows override it for that tenant only
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=True)
    entity_type = Column(String(50), nullable=False)  # audit_log, notification, oauth_state
    retention_days = Column(Integer, nullable=False)
    archive_before_delete = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class RetentionJob(Base):
    __tablename__ = "retention_jobs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=True)  # NULL: all tenants
    status = Column(String(20), default="running", nullable=False)  # running, completed, failed
    triggered_by = Column(String(50), nullable=True)
    records_archived = Column(Integer, default=0, nullable=False)
    records_deleted = Column(Integer, default=0, nullable=False)
    details = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)
