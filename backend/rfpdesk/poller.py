# poller.py
# Vendor reply ingestion: unread mail -> tracking token -> oracle -> proposal + chat notice.
#
# Each message is handled on its own; a bad one is logged and the batch moves on.
# Nothing is written before the mailbox connection and unread listing succeed.
# No database transaction is open while IMAP or the oracle is being waited on.

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from . import lifecycle, proposals, timeline, vendors
from .ai_helpers import ExtractionOracle
from .errors import MessageParseError, SenderMismatchError, UnknownReferenceError, UnrecognizedTokenError
from .mailbox import InboundMessage, parse_message
from .models import PollSummary, ProposalExtraction
from .pdf_text import combine_attachment_text
from .storage import Database
from .tables import Role
from .tokens import TrackingToken, require_token

log = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIP_UNPARSEABLE = "unparseable"
SKIP_NO_TOKEN = "no_token"
SKIP_UNKNOWN_REFERENCE = "unknown_reference"
SKIP_SENDER_MISMATCH = "sender_mismatch"


@dataclass
class PollReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    skipped: Dict[str, List[str]] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    def record(self, outcome: str, uid: str):
        if outcome == CREATED:
            self.created.append(uid)
        elif outcome == UPDATED:
            self.updated.append(uid)
        else:
            self.skipped.setdefault(outcome, []).append(uid)

    def summary(self) -> PollSummary:
        return PollSummary(created=self.created, updated=self.updated,
                           skipped=self.skipped, failed=self.failed)


@dataclass
class ReplyTarget:
    """What a token resolved to, copied out of the db session."""
    rfp_id: str
    rfp_title: str
    rfp_description: str
    vendor_id: str
    vendor_name: str
    session_id: Optional[str]


class MailboxPoller:
    def __init__(self, mailbox, oracle: ExtractionOracle, db: Database,
                 mark_sender_mismatch: bool = False):
        self.mailbox = mailbox
        self.oracle = oracle
        self.db = db
        # mismatched senders stay unread for manual review unless told otherwise
        self.mark_sender_mismatch = mark_sender_mismatch

    def run(self) -> PollReport:
        """Process every unread message. Raises MailboxConnectionError if the inbox is unreachable."""
        report = PollReport()
        with self.mailbox.connect() as inbox:
            uids = inbox.list_unread()
            log.info("Mailbox poll: %d unread message(s)", len(uids))
            for uid in uids:
                try:
                    outcome = self._ingest(inbox, uid)
                except Exception:
                    log.exception("Failed to ingest message %s; left unread for the next poll", uid,
                                  extra={"uid": uid})
                    report.failed.append(uid)
                    continue
                report.record(outcome, uid)
        log.info("Mailbox poll done: %d created, %d updated, %d skipped, %d failed",
                 len(report.created), len(report.updated),
                 sum(len(v) for v in report.skipped.values()), len(report.failed))
        return report

    def _ingest(self, inbox, uid: str) -> str:
        raw = inbox.fetch(uid)
        try:
            message = parse_message(raw)
        except MessageParseError as e:
            log.warning("Message %s: %s; marking processed", uid, e, extra={"uid": uid, "outcome": SKIP_UNPARSEABLE})
            inbox.mark_read(uid)
            return SKIP_UNPARSEABLE

        try:
            token = require_token(message.body)
        except UnrecognizedTokenError:
            log.info("Message %s from %s has no tracking token; treating as foreign mail",
                     uid, message.from_header, extra={"uid": uid, "outcome": SKIP_NO_TOKEN})
            inbox.mark_read(uid)
            return SKIP_NO_TOKEN

        try:
            target = self._resolve(token, message)
        except UnknownReferenceError as e:
            log.info("Message %s: %s; marking processed", uid, e,
                     extra={"uid": uid, "outcome": SKIP_UNKNOWN_REFERENCE})
            inbox.mark_read(uid)
            return SKIP_UNKNOWN_REFERENCE
        except SenderMismatchError as e:
            log.warning("Message %s: %s", uid, e, extra={"uid": uid, "outcome": SKIP_SENDER_MISMATCH})
            if self.mark_sender_mismatch:
                inbox.mark_read(uid)
            return SKIP_SENDER_MISMATCH

        attachment_text = combine_attachment_text(message.attachments)
        extraction = self.oracle.extract_proposal(
            message.body, attachment_text, target.rfp_title, target.rfp_description,
        )
        created = self._persist(target, message, extraction)
        inbox.mark_read(uid)
        log.info("Message %s: proposal %s for rfp=%s vendor=%s", uid, CREATED if created else UPDATED,
                 target.rfp_id, target.vendor_id,
                 extra={"uid": uid, "rfp_id": target.rfp_id, "vendor_id": target.vendor_id})
        return CREATED if created else UPDATED

    def _resolve(self, token: TrackingToken, message: InboundMessage) -> ReplyTarget:
        with self.db.session() as s:
            rfp = lifecycle.resolve_rfp(s, token.rfp_id)
            vendor = vendors.resolve_recipient(s, rfp.id, token.vendor_id)
            vendors.verify_sender(vendor, message.from_address)
            chat = timeline.session_for_rfp(s, rfp.id)
            return ReplyTarget(
                rfp_id=rfp.id,
                rfp_title=rfp.title,
                rfp_description=rfp.description,
                vendor_id=vendor.id,
                vendor_name=vendor.name,
                session_id=chat.id if chat else None,
            )

    def _persist(self, target: ReplyTarget, message: InboundMessage,
                 extraction: ProposalExtraction) -> bool:
        fields = extraction.model_dump()
        fields.update(
            raw_email_body=message.body,
            email_from=message.from_address or message.from_header,
            email_subject=message.subject,
            attachments=message.attachment_meta(),
        )
        for attempt in (1, 2):
            try:
                with self.db.session() as s:
                    _, created = proposals.upsert(s, target.rfp_id, target.vendor_id, fields)
                    lifecycle.mark_reply_received(s, lifecycle.get_rfp(s, target.rfp_id))
                    if target.session_id:
                        timeline.append(s, target.session_id, Role.SYSTEM,
                                        timeline.REPLY_NOTICE.format(vendor=target.vendor_name))
                    else:
                        log.warning("RFP %s has no chat session; reply notice not recorded", target.rfp_id)
                    return created
            except IntegrityError:
                # lost the insert race to an overlapping poll; the retry updates its row
                if attempt == 2:
                    raise
                log.info("Proposal for rfp=%s vendor=%s inserted concurrently; retrying as update",
                         target.rfp_id, target.vendor_id)
        return False
