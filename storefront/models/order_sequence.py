import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base


class OrderSequence(Base):
    """
    Daily counter behind order numbers.

    One row per prefix and calendar day (UTC). The counter is only ever
    advanced with a relative UPDATE, so two intakes on the same day never
    read the same number.

    Example:
        prefix = "HOM", sequence_date = "20261017", current_number = 41
        -> next order number: HOM-20261017-0042
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        UniqueConstraint("prefix", "sequence_date", name="uq_order_sequence_prefix_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    sequence_date: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        comment="YYYYMMDD"
    )
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<OrderSequence({self.prefix}-{self.sequence_date}: {self.current_number})>"
