"""Affiliate program models.

Supports:
- Affiliate directory keyed by referral code
- Per-order commission records
- Referral visit log (click to sale)

Aggregate counters on Affiliate are only changed through relative
UPDATE statements, never by loading and saving the whole row.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base


class AffiliateStatus(str, Enum):
    """Affiliate application status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class CommissionStatus(str, Enum):
    """Commission lifecycle status."""
    PENDING = "pending"       # Earned, awaiting approval
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class Affiliate(Base):
    """
    Affiliate profile.
    Identified publicly by its unique referral code.
    """
    __tablename__ = "affiliates"
    __table_args__ = (
        Index("ix_affiliates_code_status", "referral_code", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Contact
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Referral Code
    referral_code: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="Unique referral code e.g. JOHN2024"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default=AffiliateStatus.PENDING.value,
        nullable=False
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Commission
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Commission % of order total"
    )

    # Stats
    total_clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_sales: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    pending_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    paid_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def is_approved(self) -> bool:
        return self.status == AffiliateStatus.APPROVED.value

    def __repr__(self) -> str:
        return f"<Affiliate(code='{self.referral_code}', status='{self.status}')>"


class AffiliateCommission(Base):
    """
    Commission earned by an affiliate on one order.
    The rate is copied at attribution time so later rate changes
    never alter past commissions.
    """
    __tablename__ = "affiliate_commissions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    affiliate_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # One commission per order
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False
    )
    order_number: Mapped[str] = mapped_column(String(30), nullable=False)
    order_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=CommissionStatus.PENDING.value,
        nullable=False
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship("Affiliate")

    def __repr__(self) -> str:
        return f"<AffiliateCommission(order='{self.order_number}', amount={self.commission_amount})>"


class AffiliateReferral(Base):
    """
    Referral visit log.
    One row per captured referral navigation, closed out when an
    order is attributed to it.
    """
    __tablename__ = "affiliate_referrals"
    __table_args__ = (
        Index("ix_affiliate_referrals_code_converted", "affiliate_code", "converted"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Affiliate
    affiliate_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    affiliate_code: Mapped[str] = mapped_column(String(30), nullable=False)

    # Visit Tracking
    landing_page: Mapped[str] = mapped_column(String(500), nullable=False, default="/")
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Conversion
    converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True
    )
    order_total: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    commission_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Timestamps
    visited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship("Affiliate")

    def __repr__(self) -> str:
        return f"<AffiliateReferral(code='{self.affiliate_code}', converted={self.converted})>"
