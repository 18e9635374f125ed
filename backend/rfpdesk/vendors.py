# vendors.py
# Vendor directory. Email is the unique, case-insensitive key.

from typing import List, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import SenderMismatchError, UnknownReferenceError
from .tables import RfpVendor, Vendor


def normalise_email(address: str) -> str:
    return (address or "").strip().lower()


def list_vendors(session: Session) -> List[Vendor]:
    return list(session.scalars(select(Vendor).order_by(Vendor.name)))


def get_or_create(session: Session, name: str, email: str) -> Vendor:
    """Upsert by email; an existing vendor keeps its id and name."""
    key = normalise_email(email)
    vendor = session.scalar(select(Vendor).where(Vendor.email == key))
    if vendor is None:
        vendor = Vendor(name=name.strip(), email=key)
        session.add(vendor)
        session.flush()
    return vendor


def find_many(session: Session, vendor_ids: Sequence[str]) -> List[Vendor]:
    if not vendor_ids:
        return []
    return list(session.scalars(select(Vendor).where(Vendor.id.in_(list(vendor_ids)))))


def resolve_recipient(session: Session, rfp_id: str, vendor_id: str) -> Vendor:
    """The vendor behind a tracking token; it must be one the RFP was sent to."""
    vendor = session.get(Vendor, vendor_id)
    if vendor is None:
        raise UnknownReferenceError(f"unknown vendor {vendor_id}")
    if session.get(RfpVendor, (rfp_id, vendor_id)) is None:
        raise UnknownReferenceError(f"rfp {rfp_id} was never sent to vendor {vendor_id}")
    return vendor


def verify_sender(vendor: Vendor, from_address: str):
    """The parsed sender address must be the vendor's registered one; display names are ignored."""
    registered = normalise_email(vendor.email)
    sender = normalise_email(from_address)
    if not registered or sender != registered:
        raise SenderMismatchError(f"sender {sender!r} is not {vendor.name} <{registered}>")
