"""
Contract and Renewal Models
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    contract_type = Column(String(30), default="ongoing", nullable=False)  # ongoing, event, executive, patrol
    status = Column(String(20), default="draft", nullable=False, index=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True, index=True)
    contract_value = Column(Float, nullable=True)
    auto_renew = Column(Boolean, default=False, nullable=False)
    assigned_manager = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    renewals = relationship(
        "ContractRenewal", back_populates="original_contract", cascade="all, delete-orphan"
    )


class ContractRenewal(Base):
    __tablename__ = "contract_renewals"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    original_contract_id = Column(
        Integer, ForeignKey("contracts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status = Column(String(20), default="upcoming", nullable=False)  # upcoming, in_negotiation, renewed, churned
    renewal_type = Column(String(20), default="manual", nullable=False)  # automatic, manual
    original_end_date = Column(DateTime, nullable=True)
    renewal_start_date = Column(DateTime, nullable=True)
    renewal_end_date = Column(DateTime, nullable=True)
    proposed_value = Column(Float, nullable=True)
    churn_risk = Column(String(10), default="low", nullable=False)  # low, medium, high
    churn_reasons = Column(JSON, default=list)
    retention_strategy = Column(Text, nullable=True)
    assigned_manager = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    original_contract = relationship("Contract", back_populates="renewals")
    alerts = relationship("RenewalAlert", back_populates="renewal", cascade="all, delete-orphan")


class RenewalAlert(Base):
    __tablename__ = "contract_renewal_alerts"

    id = Column(Integer, primary_key=True, index=True)
    renewal_id = Column(
        Integer, ForeignKey("contract_renewals.id", ondelete="CASCADE"), index=True, nullable=False
    )
    days_before = Column(Integer, nullable=False)  # 90, 60, 30, 7
    alert_date = Column(DateTime, nullable=False, index=True)
    is_sent = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime, nullable=True)

    renewal = relationship("ContractRenewal", back_populates="alerts")
