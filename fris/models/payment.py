from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Enum, Float, Integer, String, UniqueConstraint

from .base import Base

PAYMENT_STATUS = ("MATCH", "SHORT", "OVER", "DELAYED")


def _default_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("declaration_id", "bank_ref", name="uq_payment_bank_ref"),)

    id = Column(Integer, primary_key=True)
    declaration_id = Column(String(50), nullable=False, index=True)
    bank_ref = Column(String(100), nullable=False)
    assessed = Column(Float, nullable=False)
    paid = Column(Float, nullable=False)
    fx_rate = Column(Float, nullable=True)
    status = Column(Enum(*PAYMENT_STATUS, name="payment_status", create_constraint=False), nullable=False)
    created_at = Column(DateTime, default=_default_now, nullable=False)

    @property
    def delta(self) -> float:
        """Paid minus assessed; negative when the importer paid short."""
        return self.paid - self.assessed
