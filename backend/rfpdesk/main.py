# main.py
# FastAPI surface: chat drafting, sending, vendor replies and comparison.
# Run: uvicorn rfpdesk.main:app

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import drafting, models, proposals, tables, timeline, vendors
from .ai_helpers import ExtractionOracle, build_client
from .config import Settings, load_settings
from .errors import (
    FanOutValidationError, InvalidTransitionError, MailboxConnectionError, NoProposalsError,
    NotFoundError, OracleError, RfpDeskError,
)
from .logging_config import setup_logging
from .mailbox import DisabledMailbox, ImapMailbox
from .mailer import OutboxMailer, SmtpMailer
from .poller import MailboxPoller
from .storage import Database

log = logging.getLogger(__name__)

ERROR_STATUS = {
    FanOutValidationError: 400,
    NoProposalsError: 400,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    OracleError: 502,
    MailboxConnectionError: 503,
}


@dataclass
class Services:
    db: Database
    oracle: ExtractionOracle
    mailer: object
    poller: MailboxPoller


def build_services(settings: Settings) -> Services:
    db = Database(settings.database_url)
    oracle = ExtractionOracle(
        build_client(settings.openai_api_key, settings.openai_timeout),
        model=settings.openai_model,
        timeout=settings.openai_timeout,
    )
    if settings.imap_configured:
        mailbox = ImapMailbox(settings.imap_host, settings.imap_user, settings.imap_password or "",
                              port=settings.imap_port, folder=settings.imap_folder,
                              timeout=settings.imap_timeout)
    else:
        log.warning("IMAP is not configured; vendor replies cannot be polled")
        mailbox = DisabledMailbox()
    if settings.smtp_configured:
        mailer = SmtpMailer(settings.smtp_host, settings.smtp_port, settings.smtp_user,
                            settings.smtp_password, settings.mail_from, settings.smtp_timeout)
    else:
        mailer = OutboxMailer(settings.data_dir / "outbox.json")
    return Services(db=db, oracle=oracle, mailer=mailer, poller=MailboxPoller(mailbox, oracle, db))


def _poll_forever(poller: MailboxPoller, interval: int, stop: threading.Event):
    while not stop.wait(interval):
        try:
            poller.run()
        except MailboxConnectionError as e:
            log.warning("Scheduled poll skipped: %s", e)
        except Exception:
            log.exception("Scheduled poll failed")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            setup_logging(settings.log_level, settings.log_json)
            app.state.services = build_services(settings)
        svc = app.state.services
        svc.db.create_all()
        stop = threading.Event()
        worker = None
        if settings.poll_interval_seconds > 0:
            worker = threading.Thread(
                target=_poll_forever, args=(svc.poller, settings.poll_interval_seconds, stop),
                name="mailbox-poller", daemon=True,
            )
            worker.start()
            log.info("Polling the vendor inbox every %ss", settings.poll_interval_seconds)
        yield
        stop.set()
        if worker is not None:
            # let an in-flight poll finish before the engine goes away
            worker.join(timeout=settings.imap_timeout + settings.openai_timeout)
            if worker.is_alive():
                log.warning("Mailbox poller still running at shutdown")

    app = FastAPI(title="RFP Desk API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RfpDeskError)
    def _domain_error(request: Request, exc: RfpDeskError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        if status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc)
        body = {"detail": str(exc)}
        if isinstance(exc, FanOutValidationError) and exc.unknown_ids:
            body["unknown_vendor_ids"] = exc.unknown_ids
        return JSONResponse(status_code=status, content=body)

    _register_routes(app)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


def _register_routes(app: FastAPI):

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # --- chat / RFP drafting ---
    @app.get("/api/v1/chat/history", response_model=List[models.ChatSessionSummary])
    def chat_history(svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            return [
                models.ChatSessionSummary(id=c.id, created_at=c.created_at,
                                          rfp_status=c.rfp.status if c.rfp else None)
                for c in timeline.list_sessions(s)
            ]

    @app.get("/api/v1/chat/{session_id}", response_model=models.ChatTranscript)
    def get_chat(session_id: str, svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            chat = timeline.get_session(s, session_id)
            return models.ChatTranscript(
                session_id=chat.id,
                rfp=models.RFP.model_validate(chat.rfp) if chat.rfp else None,
                messages=[models.ChatMessage.model_validate(m) for m in timeline.history(s, chat.id)],
            )

    @app.post("/api/v1/chat", response_model=models.ChatReply)
    def post_chat(body: models.ChatRequest, svc: Services = Depends(get_services)):
        return drafting.chat(svc.db, svc.oracle, body.session_id, body.data)

    @app.post("/api/v1/chat/finalize", response_model=models.FinalizeResult)
    def finalize_rfp(body: models.FinalizeRequest, svc: Services = Depends(get_services)):
        return drafting.finalize(svc.db, svc.mailer, body)

    @app.post("/api/v1/chat/{session_id}/complete", response_model=models.RFP)
    def complete_rfp(session_id: str, svc: Services = Depends(get_services)):
        return drafting.complete(svc.db, session_id)

    @app.post("/api/v1/chat/{session_id}/cancel", response_model=models.RFP)
    def cancel_rfp(session_id: str, svc: Services = Depends(get_services)):
        return drafting.cancel(svc.db, session_id)

    # --- vendors ---
    @app.get("/api/v1/vendors", response_model=List[models.Vendor])
    def list_vendors(svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            return [models.Vendor.model_validate(v) for v in vendors.list_vendors(s)]

    @app.post("/api/v1/vendors", response_model=models.Vendor)
    def create_vendor(body: models.VendorCreate, svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            return models.Vendor.model_validate(vendors.get_or_create(s, body.name, body.email))

    # --- vendor replies ---
    @app.post("/api/v1/mailbox/poll", response_model=models.PollSummary)
    def poll_mailbox(svc: Services = Depends(get_services)):
        return svc.poller.run().summary()

    @app.get("/api/v1/proposals/mails/{session_id}", response_model=models.ProposalMails)
    def proposal_mails(session_id: str, svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            timeline.get_session(s, session_id)
        poll, poll_error = None, None
        try:
            poll = svc.poller.run().summary()
        except MailboxConnectionError as e:
            log.warning("Mailbox poll failed: %s", e)
            poll_error = str(e)
        with svc.db.session() as s:
            rfp = timeline.get_session(s, session_id).rfp
            rows = proposals.list_for_rfp(s, rfp.id) if rfp else []
            return models.ProposalMails(
                mails=[models.ProposalMail.model_validate(p) for p in rows],
                proposal_exists=bool(rows),
                poll=poll,
                poll_error=poll_error,
            )

    @app.get("/api/v1/proposals/{proposal_id}", response_model=models.Proposal)
    def get_proposal(proposal_id: str, svc: Services = Depends(get_services)):
        with svc.db.session() as s:
            row = s.get(tables.Proposal, proposal_id)
            if row is None:
                raise NotFoundError(f"unknown proposal {proposal_id}")
            return models.Proposal.model_validate(row)

    @app.post("/api/v1/proposals/compare", response_model=models.ComparisonResult)
    def compare_proposals(body: models.CompareRequest, svc: Services = Depends(get_services)):
        return drafting.compare(svc.db, svc.oracle, body.session_id)


app = create_app()
