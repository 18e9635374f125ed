# lifecycle.py
# RFP status machine:
#
#   DRAFT -> SENT -> IN_PROGRESS -> COMPLETED
#   DRAFT -> CANCELLED
#
# DRAFT -> SENT is the fan-out: vendor junction rows, sent_at and any title or
# description override are written in the caller's single transaction, after
# every vendor id has been validated. SENT -> IN_PROGRESS happens when the first
# proposal lands.

import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from . import proposals, vendors
from .errors import FanOutValidationError, InvalidTransitionError, NoProposalsError, NotFoundError, UnknownReferenceError
from .tables import RFP, RfpStatus, RfpVendor, Vendor, utcnow

log = logging.getLogger(__name__)

TRANSITIONS = {
    RfpStatus.DRAFT: {RfpStatus.SENT, RfpStatus.CANCELLED},
    RfpStatus.SENT: {RfpStatus.IN_PROGRESS},
    RfpStatus.IN_PROGRESS: {RfpStatus.COMPLETED},
    RfpStatus.COMPLETED: set(),
    RfpStatus.CANCELLED: set(),
}


def can_transition(current: RfpStatus, target: RfpStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def _move(rfp: RFP, target: RfpStatus):
    if not can_transition(rfp.status, target):
        raise InvalidTransitionError(f"RFP {rfp.id} cannot go from {rfp.status.value} to {target.value}")
    log.info("RFP %s: %s -> %s", rfp.id, rfp.status.value, target.value, extra={"rfp_id": rfp.id})
    rfp.status = target


def get_rfp(session: Session, rfp_id: str, for_update: bool = False) -> RFP:
    rfp = session.get(RFP, rfp_id, with_for_update=for_update)
    if rfp is None:
        raise NotFoundError(f"unknown rfp {rfp_id}")
    return rfp


def resolve_rfp(session: Session, rfp_id: str) -> RFP:
    """Lookup for an inbound tracking token."""
    rfp = session.get(RFP, rfp_id)
    if rfp is None:
        raise UnknownReferenceError(f"unknown rfp {rfp_id}")
    return rfp


def accepts_chat(rfp: Optional[RFP]) -> bool:
    return rfp is None or rfp.status == RfpStatus.DRAFT


def ensure_chat_allowed(rfp: Optional[RFP]):
    if not accepts_chat(rfp):
        raise InvalidTransitionError(
            f"RFP is {rfp.status.value}; it can no longer be edited. "
            "Check vendor replies or compare proposals instead."
        )


def finalize(session: Session, rfp_id: str, vendor_ids: Sequence[str],
             title: Optional[str] = None, description: Optional[str] = None) -> List[Vendor]:
    """DRAFT -> SENT with vendor fan-out. Nothing is written unless every id resolves."""
    rfp = get_rfp(session, rfp_id, for_update=True)
    if rfp.status != RfpStatus.DRAFT:
        raise InvalidTransitionError(f"RFP {rfp.id} is {rfp.status.value}; only a DRAFT can be sent")

    wanted = list(dict.fromkeys(v for v in vendor_ids if v))
    if not wanted:
        raise FanOutValidationError("select at least one vendor")
    found = {v.id: v for v in vendors.find_many(session, wanted)}
    unknown = [v for v in wanted if v not in found]
    if unknown:
        raise FanOutValidationError(f"unknown vendor ids: {', '.join(unknown)}", unknown_ids=unknown)

    for vendor_id in wanted:
        session.add(RfpVendor(rfp_id=rfp.id, vendor_id=vendor_id))
    if title is not None:
        rfp.title = title
    if description is not None:
        rfp.description = description
    rfp.sent_at = utcnow()
    _move(rfp, RfpStatus.SENT)
    session.flush()
    return [found[v] for v in wanted]


def mark_reply_received(session: Session, rfp: RFP):
    if rfp.status == RfpStatus.SENT and proposals.count_for_rfp(session, rfp.id) > 0:
        _move(rfp, RfpStatus.IN_PROGRESS)


def complete(rfp: RFP):
    _move(rfp, RfpStatus.COMPLETED)


def cancel(rfp: RFP):
    _move(rfp, RfpStatus.CANCELLED)


def ensure_comparable(session: Session, rfp: Optional[RFP]):
    if rfp is None or proposals.count_for_rfp(session, rfp.id) == 0:
        raise NoProposalsError("No proposals found to compare.")
