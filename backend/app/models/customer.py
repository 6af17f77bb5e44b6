"""
Customer Model — Expected identity record for an envelope's intended signer.
Read-only from the signing engine's perspective.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Date

from app.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(64), primary_key=True, index=True)
    kind = Column(String(16), nullable=False)     # INDIVIDUAL | BUSINESS

    display_name = Column(String(128), nullable=False)
    email = Column(String(128))
    phone = Column(String(24))

    # Individual
    date_of_birth = Column(Date)
    national_id = Column(String(32))

    # Business
    registration_number = Column(String(32))
    registration_date = Column(Date)
    tin = Column(String(32))

    created_at = Column(DateTime, default=datetime.utcnow)
