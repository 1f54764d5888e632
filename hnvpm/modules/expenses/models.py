"""Operating expense model."""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.sql import func
from hnvpm.database import Base

EXPENSE_CATEGORIES = ("Repairs", "Utilities", "Management Fees", "Insurance", "Taxes", "Salary", "Other")


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String(30), nullable=False, index=True)
    expense_date = Column(DateTime, server_default=func.now(), index=True)
    vendor = Column(String(200))
    receipt_number = Column(String(100))
    notes = Column(Text)
    status = Column(String(20), nullable=False, default="Active", index=True)  # Active/Archived
    archived_at = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
