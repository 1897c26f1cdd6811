from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from crm_migrator.core.database import Base


class Interaction(Base):
    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"))
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"))
    type = Column(String, default="OTHER") # CALL, EMAIL, MEETING, OTHER
    date = Column(DateTime(timezone=True), nullable=False)
    account_manager = Column(String)
    principal = Column(String)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
