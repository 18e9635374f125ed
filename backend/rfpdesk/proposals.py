# proposals.py
# Idempotent proposal upsert keyed by (rfp_id, vendor_id). Latest reply wins for the
# bid itself; who/what first replied is kept from the first write.

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .tables import Proposal

BID_FIELDS = (
    "price", "delivery_days", "warranty", "payment_terms",
    "notes", "ai_summary", "ai_score", "raw_email_body",
)
IDENTITY_FIELDS = ("email_from", "email_subject", "attachments")


def find(session: Session, rfp_id: str, vendor_id: str) -> Optional[Proposal]:
    stmt = select(Proposal).where(Proposal.rfp_id == rfp_id, Proposal.vendor_id == vendor_id)
    return session.scalar(stmt)


def _apply_bid(row: Proposal, fields: Dict[str, Any]):
    for name in BID_FIELDS:
        if name in fields:
            setattr(row, name, fields[name])


def upsert(session: Session, rfp_id: str, vendor_id: str,
           fields: Dict[str, Any]) -> Tuple[Proposal, bool]:
    """Create or update the proposal for this key. Returns (row, created)."""
    row = find(session, rfp_id, vendor_id)
    if row is not None:
        _apply_bid(row, fields)
        session.flush()
        return row, False

    # a concurrent insert of the same key raises IntegrityError on flush; callers
    # retry their transaction, which then takes the update branch above
    row = Proposal(rfp_id=rfp_id, vendor_id=vendor_id, status="RECEIVED")
    for name in IDENTITY_FIELDS:
        setattr(row, name, fields.get(name))
    if row.attachments is None:
        row.attachments = []
    _apply_bid(row, fields)
    session.add(row)
    session.flush()
    return row, True


def count_for_rfp(session: Session, rfp_id: str) -> int:
    return session.scalar(select(func.count()).select_from(Proposal).where(Proposal.rfp_id == rfp_id)) or 0


def list_for_rfp(session: Session, rfp_id: str) -> List[Proposal]:
    stmt = select(Proposal).where(Proposal.rfp_id == rfp_id).order_by(Proposal.created_at)
    return list(session.scalars(stmt))
