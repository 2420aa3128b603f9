from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, index=True, nullable=False)  # Public intake forms
    created_at = Column(DateTime, server_default=func.now())

    users = relationship("User", back_populates="organization")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    auth_uid = Column(String(255), unique=True, index=True, nullable=False)  # Auth provider "sub"
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default="guard", nullable=False)  # admin, manager, guard, client
    permissions = Column(JSON, nullable=True)  # Per-user override of the role permission matrix
    is_active = Column(Boolean, default=True, nullable=False)
    # Guards report to a manager; used for calendar visibility and certification alerts
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="users")

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    lead_type = Column(String(20), default="client", nullable=False)  # client, guard
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    source_type = Column(String(50), default="direct_website", nullable=False)
    source_details = Column(JSON, default=dict)
    service_type = Column(String(100), nullable=True)  # executive, event, patrol, ...
    message = Column(Text, nullable=True)
    estimated_value = Column(Float, nullable=True)

    # Pipeline
    status = Column(String(30), default="prospect", nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_at = Column(DateTime, nullable=True)
    last_contact_date = Column(DateTime, nullable=True)
    next_follow_up_date = Column(DateTime, nullable=True)
    contact_count = Column(Integer, default=0, nullable=False)
    converted_to_contract = Column(Boolean, default=False, nullable=False)

    # Qualification
    qualification_score = Column(Float, nullable=True)
    qualification_factors = Column(JSON, nullable=True)
    qualification_notes = Column(Text, nullable=True)
    priority = Column(String(10), nullable=True)  # high, medium, low
    application_probability = Column(Float, nullable=True)
    hire_probability = Column(Float, nullable=True)

    # Recruiting (guard leads)
    application_status = Column(String(50), nullable=True)  # Mirrors hiring pipeline stage
    converted_to_hire = Column(Boolean, default=False, nullable=False)
    years_experience = Column(Integer, nullable=True)
    has_security_experience = Column(Boolean, default=False)
    has_license = Column(Boolean, default=False)
    transportation_available = Column(Boolean, default=False)
    willing_to_relocate = Column(Boolean, default=False)
    salary_expectations = Column(Float, nullable=True)
    certifications = Column(JSON, default=list)
    preferred_locations = Column(JSON, default=list)
    availability = Column(JSON, default=dict)  # {"fullTime": bool, "weekends": bool, ...}
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    assigned_manager = relationship("User", foreign_keys=[assigned_to])


class LeadAssignmentRule(Base):
    """Tenant-defined assignment rule; the built-in defaults apply when none exist"""

    __tablename__ = "lead_assignment_rules"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    priority = Column(Integer, default=50, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    conditions = Column(JSON, default=dict)
    assignment_method = Column(String(30), default="round_robin", nullable=False)
    eligible_managers = Column(JSON, default=list)
    created_at = Column(DateTime, server_default=func.now())


class LeadScoringConfig(Base):
    """Tenant scoring configuration; stores the factor/rule tree as JSON"""

    __tablename__ = "lead_scoring_configs"
    __table_args__ = (UniqueConstraint("organization_id", "name", "version"),)

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    version = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    qualification_threshold = Column(Float, default=60, nullable=False)
    high_priority_threshold = Column(Float, default=80, nullable=False)
    factors = Column(JSON, default=list)
    created_at = Column(DateTime, server_default=func.now())
