"""Shared fixtures: in-memory database, fake inbox, fake OpenAI client, reply builders."""

import json
from contextlib import contextmanager
from email.message import EmailMessage
from types import SimpleNamespace

import pytest

from rfpdesk import lifecycle, timeline, vendors
from rfpdesk.ai_helpers import ExtractionOracle
from rfpdesk.errors import MailboxConnectionError
from rfpdesk.poller import MailboxPoller
from rfpdesk.storage import Database
from rfpdesk.tables import RFP
from rfpdesk.tokens import append_token


# ── fake OpenAI ──

class FakeCompletions:
    """Returns queued responses in order; the last one repeats. Exceptions are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        content = item if isinstance(item, str) else json.dumps(item)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    def __init__(self, *responses):
        self.completions = FakeCompletions(responses)
        self.chat = SimpleNamespace(completions=self.completions)


GOOD_EXTRACTION = {
    "price": 5000,
    "deliveryDays": 10,
    "warranty": "12 months",
    "paymentTerms": "Net 30",
    "notes": None,
    "aiSummary": "Meets the requirements at a fair price.",
    "aiScore": 0.8,
}


@pytest.fixture
def oracle():
    return ExtractionOracle(FakeOpenAI(GOOD_EXTRACTION), model="test-model", timeout=5)


@pytest.fixture
def broken_oracle():
    return ExtractionOracle(FakeOpenAI(TimeoutError("read timed out")), model="test-model", timeout=5)


# ── fake inbox ──

class FakeInbox:
    def __init__(self, messages):
        self.messages = dict(messages)
        self.seen = set()
        self.fetched = []

    def list_unread(self):
        return [uid for uid in self.messages if uid not in self.seen]

    def fetch(self, uid):
        self.fetched.append(uid)
        raw = self.messages[uid]
        if isinstance(raw, Exception):
            raise raw
        return raw

    def mark_read(self, uid):
        self.seen.add(uid)


class FakeMailbox:
    def __init__(self, messages=None, fail=False):
        self.inbox = FakeInbox(messages or {})
        self.fail = fail
        self.connections = 0

    @contextmanager
    def connect(self):
        if self.fail:
            raise MailboxConnectionError("imap.example.com:993 unreachable")
        self.connections += 1
        yield self.inbox

    def deliver(self, uid, raw):
        self.inbox.messages[uid] = raw


class FakeMailer:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, to, subject, body):
        if to in self.fail_for:
            raise ConnectionRefusedError(f"550 mailbox unavailable: {to}")
        self.sent.append({"to": to, "subject": subject, "body": body})


def make_reply(from_addr, body, subject="Re: Laptops RFP", attachments=()):
    msg = EmailMessage()
    msg["From"] = from_addr
    msg["To"] = "procurement@example.com"
    msg["Subject"] = subject
    msg.set_content(body)
    for filename, data, mime in attachments:
        maintype, subtype = mime.split("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
    return msg.as_bytes()


def make_pdf(text):
    """Smallest single-page PDF with one line of Helvetica text."""
    stream = b"BT /F1 24 Tf 72 700 Td (" + text.encode("latin-1") + b") Tj ET"
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref)
    return out


# ── database ──

@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


def draft_rfp(db, title="Laptops for the sales team", description="20 laptops, 16GB RAM, 30 day delivery."):
    """A DRAFT RFP linked to a fresh chat session. Returns (rfp_id, session_id)."""
    with db.session() as s:
        rfp = RFP(title=title, description=description)
        s.add(rfp)
        s.flush()
        chat = timeline.create_session(s)
        chat.rfp_id = rfp.id
        return rfp.id, chat.id


@pytest.fixture
def directory(db):
    with db.session() as s:
        v1 = vendors.get_or_create(s, "Vendor One", "Sales@V1.example")
        v2 = vendors.get_or_create(s, "Vendor Two", "bids@v2.example")
        v3 = vendors.get_or_create(s, "Vendor Three", "hello@v3.example")
        return SimpleNamespace(v1=v1, v2=v2, v3=v3)


@pytest.fixture
def sent_rfp(db, directory):
    """R1 sent to V1 and V2 (V3 exists but was not invited)."""
    rfp_id, session_id = draft_rfp(db)
    with db.session() as s:
        lifecycle.finalize(s, rfp_id, [directory.v1.id, directory.v2.id])
    return SimpleNamespace(rfp_id=rfp_id, session_id=session_id, **vars(directory))


def reply_body(rfp_id, vendor_id, text="Our price is $5,000, delivery in 10 days"):
    """A vendor answer quoting the outbound mail, token included."""
    quoted = append_token("Please quote for 20 laptops.", rfp_id, vendor_id)
    return text + "\n\nOn Mon, Procurement wrote:\n" + "\n".join("> " + line for line in quoted.splitlines())


@pytest.fixture
def make_poller(db, oracle):
    def _make(mailbox, oracle_override=None, **kwargs):
        return MailboxPoller(mailbox, oracle_override or oracle, db, **kwargs)
    return _make
