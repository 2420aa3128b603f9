"""
A/B Testing Models
"""
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


class ABTest(Base):
    __tablename__ = "ab_tests"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    test_type = Column(String(30), nullable=False)  # form_variant, email_sequence, landing_page
    hypothesis = Column(Text, nullable=True)
    success_metric = Column(String(100), nullable=True)
    status = Column(String(20), default="draft", nullable=False, index=True)
    confidence_level = Column(Float, default=95, nullable=False)
    minimum_sample_size = Column(Integer, default=100, nullable=False)
    minimum_effect_size = Column(Float, default=5, nullable=False)
    winner_variant_id = Column(Integer, nullable=True)
    results = Column(JSON, nullable=True)
    analysis_notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    variants = relationship(
        "ABTestVariant",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="ABTestVariant.position",
    )


class ABTestVariant(Base):
    __tablename__ = "ab_test_variants"

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(Integer, ForeignKey("ab_tests.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)  # Assignment walks variants in this order
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    config = Column(JSON, default=dict)
    traffic_percentage = Column(Float, nullable=False)
    is_control = Column(Boolean, default=False, nullable=False)
    visitors = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)

    test = relationship("ABTest", back_populates="variants")


class VisitorAssignment(Base):
    __tablename__ = "ab_test_visitor_assignments"
    __table_args__ = (UniqueConstraint("test_id", "visitor_id"),)

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(Integer, ForeignKey("ab_tests.id", ondelete="CASCADE"), index=True, nullable=False)
    variant_id = Column(Integer, ForeignKey("ab_test_variants.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(String(255), nullable=False)
    user_agent = Column(String(500), nullable=True)
    referrer = Column(String(500), nullable=True)
    assigned_at = Column(DateTime, server_default=func.now())


class ABTestConversion(Base):
    __tablename__ = "ab_test_conversions"
    __table_args__ = (UniqueConstraint("test_id", "visitor_id"),)

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(Integer, ForeignKey("ab_tests.id", ondelete="CASCADE"), index=True, nullable=False)
    variant_id = Column(Integer, ForeignKey("ab_test_variants.id", ondelete="CASCADE"), nullable=False)
    visitor_id = Column(String(255), nullable=False)
    conversion_value = Column(Float, default=1, nullable=False)
    conversion_data = Column(JSON, nullable=True)
    converted_at = Column(DateTime, server_default=func.now())
