from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base
from .timeutils import utcnow


# --- MODELS ---
class Staff(Base):
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(String, unique=True, index=True, nullable=False)
    pin_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    position = Column(String, nullable=False)
    department = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    votes = relationship("Vote", back_populates="campaign", passive_deletes="all")


class Vote(Base):
    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, index=True)
    # RESTRICT keeps a campaign or staff row alive while any vote points at it
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    voter_staff_id = Column(
        String, ForeignKey("staff.staff_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    candidate_staff_id = Column(
        String, ForeignKey("staff.staff_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="votes")
    voter = relationship("Staff", foreign_keys=[voter_staff_id])
    candidate = relationship("Staff", foreign_keys=[candidate_staff_id])

    __table_args__ = (
        # One vote per staff member per campaign
        UniqueConstraint("campaign_id", "voter_staff_id", name="uq_campaign_voter_vote"),
    )


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
