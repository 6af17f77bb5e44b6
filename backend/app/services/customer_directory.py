"""
Customer Directory — read-only lookup of the expected identity record for an
envelope's intended signer.
"""
from datetime import date
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from app.models.customer import Customer
from app.schemas.records import SignerKind
from app.utils.exceptions import ValidationFailed


class IdentityRecord(BaseModel):
    """Expected identity values. Never leaves the engine."""

    customer_ref: str
    kind: SignerKind
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    national_id: Optional[str] = None
    registration_number: Optional[str] = None
    registration_date: Optional[date] = None
    tin: Optional[str] = None


class CustomerDirectory:
    """Interface for identity lookups."""

    def get_identity(self, customer_ref: str) -> IdentityRecord:
        raise NotImplementedError


class DatabaseCustomerDirectory(CustomerDirectory):
    """Reads identity records from the `customers` table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_identity(self, customer_ref: str) -> IdentityRecord:
        with self._session_factory() as db:
            customer = db.get(Customer, customer_ref)
            if customer is None:
                raise ValidationFailed(f"Unknown customer {customer_ref}", error_code="UNKNOWN_CUSTOMER")
            return IdentityRecord(
                customer_ref=customer.id,
                kind=SignerKind(customer.kind),
                display_name=customer.display_name,
                email=customer.email,
                phone=customer.phone,
                date_of_birth=customer.date_of_birth,
                national_id=customer.national_id,
                registration_number=customer.registration_number,
                registration_date=customer.registration_date,
                tin=customer.tin,
            )
