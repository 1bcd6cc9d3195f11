from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Enum, Integer, JSON, String

from .base import Base

DECLARATION_STATUS = ("FILED", "HELD", "STOPPED", "RELEASED")
CHANNEL_VALUES = ("GREEN", "YELLOW", "RED")


def _default_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Declaration(Base):
    __tablename__ = "declarations"

    id = Column(Integer, primary_key=True)
    declaration_id = Column(String(50), unique=True, nullable=False)
    arrival_port = Column(String(50), nullable=True)
    lodgement_ts = Column(String(64), nullable=True)
    status = Column(Enum(*DECLARATION_STATUS, name="declaration_status", create_constraint=False), nullable=False, default="FILED")
    channel = Column(Enum(*CHANNEL_VALUES, name="declaration_channel", create_constraint=False), nullable=False, default="GREEN")
    items = Column(JSON, nullable=True)
    risk_scores = Column(JSON, nullable=True)
    released_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_default_now, nullable=False)
    updated_at = Column(DateTime, default=_default_now, onupdate=_default_now, nullable=False)

    def policy_view(self):
        """Declaration record as the policy engine sees it."""
        return {
            "declaration_id": self.declaration_id,
            "arrival_port": self.arrival_port,
            "lodgement_ts": self.lodgement_ts,
            "status": self.status,
            "channel": self.channel,
        }
