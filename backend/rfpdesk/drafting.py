# drafting.py
# Chat-driven RFP drafting, sending to vendors, and proposal comparison.
# Oracle and mail calls always happen between transactions, never inside one.

import logging
from typing import List, Optional

from . import lifecycle, mailer, models, proposals, tables, timeline
from .ai_helpers import ExtractionOracle
from .errors import InvalidTransitionError
from .models import ComparisonReport
from .storage import Database
from .tables import Role

log = logging.getLogger(__name__)

COMPARE_REQUEST = "Analyze and compare the available vendor proposals for me."
NOT_RFP_REPLY = "Tell me more about your procurement needs."


def chat(db: Database, oracle: ExtractionOracle, session_id: Optional[str], text: str) -> models.ChatReply:
    """Record a user message, let the oracle draft or revise the RFP, record its answer."""
    with db.session() as s:
        if session_id:
            chat_session = timeline.get_session(s, session_id)
        else:
            chat_session = timeline.create_session(s)
        rfp = chat_session.rfp
        lifecycle.ensure_chat_allowed(rfp)
        window = timeline.recent(s, chat_session.id)
        timeline.append(s, chat_session.id, Role.USER, text)
        existing = {"title": rfp.title, "description": rfp.description} if rfp else None
        sid = chat_session.id

    draft = oracle.draft_rfp(text, window, existing)

    with db.session() as s:
        chat_session = timeline.get_session(s, sid)
        rfp = chat_session.rfp
        if not draft.is_rfp:
            message = timeline.append(s, sid, Role.ASSISTANT, draft.reason or NOT_RFP_REPLY)
            return models.ChatReply(
                session_id=sid, is_rfp=False,
                message=models.ChatMessage.model_validate(message),
                rfp=models.RFP.model_validate(rfp) if rfp else None,
            )

        # status may have moved while the oracle was thinking
        lifecycle.ensure_chat_allowed(rfp)
        if rfp is None:
            rfp = tables.RFP(title=draft.email_subject, description=draft.email_body,
                             status=tables.RfpStatus.DRAFT)
            s.add(rfp)
            s.flush()
            chat_session.rfp_id = rfp.id
            action = "Created"
        else:
            rfp.title = draft.email_subject
            rfp.description = draft.email_body
            action = "Updated"
        log.info("RFP %s %s from session %s", rfp.id, action.lower(), sid, extra={"rfp_id": rfp.id})

        message = timeline.append(
            s, sid, Role.ASSISTANT,
            f"RFP {action}!\n**Title:** {rfp.title}\n**Description:** {rfp.description}",
            is_rfp=True,
        )
        timeline.append(s, sid, Role.SYSTEM, f"RFP {action.lower()}: {rfp.title}")
        return models.ChatReply(
            session_id=sid, is_rfp=True,
            message=models.ChatMessage.model_validate(message),
            rfp=models.RFP.model_validate(rfp),
        )


def finalize(db: Database, outbound, req: models.FinalizeRequest) -> models.FinalizeResult:
    """DRAFT -> SENT, then mail each vendor. Sending starts only after the fan-out commits."""
    with db.session() as s:
        chat_session = timeline.get_session(s, req.session_id)
        if chat_session.rfp_id is None:
            raise InvalidTransitionError("this session has no RFP to send yet")
        title = req.title if req.is_change else None
        description = req.description if req.is_change else None
        recipients = lifecycle.finalize(s, chat_session.rfp_id, req.vendor_ids, title, description)
        rfp = lifecycle.get_rfp(s, chat_session.rfp_id)
        rfp_out = models.RFP.model_validate(rfp)
        names = {v.id: v.name for v in recipients}

    report = mailer.dispatch(outbound, rfp_out.id, rfp_out.title, rfp_out.description, recipients)

    with db.session() as s:
        timeline.append(s, req.session_id, Role.SYSTEM, mailer.summarize(report, names))
    return models.FinalizeResult(session_id=req.session_id, rfp=rfp_out, dispatch=report)


def format_comparison(report: ComparisonReport) -> str:
    winner = f"Winner Recommendation: {report.winner.name or 'N/A'}. {report.winner.reason}".rstrip()
    lines = []
    for r in sorted(report.rankings, key=lambda r: r.rank):
        pros = ", ".join(r.pros) or "None"
        cons = ", ".join(r.cons) or "None"
        lines.append(f"• Rank {r.rank}: {r.vendor_name} - Pros: {pros}. Cons: {cons}.")
    return (
        f"{winner}\n\nAnalysis Summary: {report.comparison_summary}"
        f"\n\nDetailed Rankings:\n" + "\n".join(lines)
    )


def _bids(session, rfp_id: str) -> List[dict]:
    return [
        {
            "vendorName": p.vendor.name,
            "price": p.price,
            "deliveryDays": p.delivery_days,
            "warranty": p.warranty,
            "paymentTerms": p.payment_terms,
            "aiSummary": p.ai_summary,
            "aiScore": p.ai_score,
        }
        for p in proposals.list_for_rfp(session, rfp_id)
    ]


def compare(db: Database, oracle: ExtractionOracle, session_id: str) -> models.ComparisonResult:
    """Rank the proposals received so far. Nothing is appended if there are none or the oracle fails."""
    with db.session() as s:
        rfp = timeline.get_session(s, session_id).rfp
        lifecycle.ensure_comparable(s, rfp)
        title, description = rfp.title, rfp.description
        bids = _bids(s, rfp.id)

    report = oracle.compare_proposals(title, description, bids)

    with db.session() as s:
        timeline.append(s, session_id, Role.USER, COMPARE_REQUEST)
        message = timeline.append(s, session_id, Role.ASSISTANT, format_comparison(report))
        return models.ComparisonResult(report=report, message=models.ChatMessage.model_validate(message))


def _close(db: Database, session_id: str, action) -> models.RFP:
    with db.session() as s:
        chat_session = timeline.get_session(s, session_id)
        if chat_session.rfp_id is None:
            raise InvalidTransitionError("this session has no RFP")
        rfp = lifecycle.get_rfp(s, chat_session.rfp_id, for_update=True)
        action(rfp)
        timeline.append(s, session_id, Role.SYSTEM, f"RFP {rfp.status.value.lower()}: {rfp.title}")
        s.flush()
        return models.RFP.model_validate(rfp)


def complete(db: Database, session_id: str) -> models.RFP:
    return _close(db, session_id, lifecycle.complete)


def cancel(db: Database, session_id: str) -> models.RFP:
    return _close(db, session_id, lifecycle.cancel)
