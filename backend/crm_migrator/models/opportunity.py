from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from crm_migrator.core.database import Base


class Opportunity(Base):
    __tablename__ = "opportunities"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False, index=True)
    stage = Column(String, default="LEAD") # LEAD, QUALIFIED, PROPOSAL, NEGOTIATION, CLOSED
    status = Column(String, default="OPEN") # OPEN, CLOSED_WON, CLOSED_LOST
    value = Column(Float, default=0.0)
    probability = Column(Float, default=0.0)
    start_date = Column(DateTime(timezone=True))
    expected_close_date = Column(DateTime(timezone=True))
    principal = Column(String)
    product = Column(String)
    owner = Column(String)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="opportunities")
