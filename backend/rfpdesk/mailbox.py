# mailbox.py
# Shared vendor inbox over IMAP, plus parsing of raw RFC 822 replies.

import email
import imaplib
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from email.header import decode_header
from email.utils import parseaddr
from typing import Iterator, List

from bs4 import BeautifulSoup

from .errors import MailboxConnectionError, MessageParseError, RfpDeskError

log = logging.getLogger(__name__)


@dataclass
class InboundAttachment:
    filename: str
    mime_type: str
    payload: bytes = field(repr=False, default=b"")


@dataclass
class InboundMessage:
    from_header: str
    from_address: str
    subject: str
    body: str
    attachments: List[InboundAttachment] = field(default_factory=list)

    def attachment_meta(self):
        return [{"filename": a.filename, "mime_type": a.mime_type} for a in self.attachments]


# --- parsing ---

def _decode_header(value) -> str:
    if not value:
        return ""
    parts = []
    for content, charset in decode_header(str(value)):
        if isinstance(content, bytes):
            parts.append(_decode_bytes(content, charset))
        else:
            parts.append(content)
    return "".join(parts).strip()


def _decode_bytes(payload: bytes, charset) -> str:
    try:
        return payload.decode(charset or "utf-8", errors="replace")
    except LookupError:
        # unknown charset name in the header
        return payload.decode("utf-8", errors="replace")


def _html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    # one block per line so table cells and divs stay apart
    text = soup.get_text(separator="\n")
    lines = [ln.strip() for ln in text.splitlines()]
    return "\n".join(ln for ln in lines if ln)


def parse_message(raw: bytes) -> InboundMessage:
    """Headers, preferred body text and attachments of one raw message."""
    try:
        msg = email.message_from_bytes(raw)
        from_header = _decode_header(msg.get("From"))
        subject = _decode_header(msg.get("Subject"))
    except Exception as e:
        raise MessageParseError(f"unparseable message: {type(e).__name__}: {e}") from e

    plain, markup, attachments = [], [], []
    for part in msg.walk():
        if part.is_multipart():
            continue
        try:
            filename = part.get_filename()
            disposition = part.get_content_disposition()
            ctype = part.get_content_type()
            if filename or disposition == "attachment":
                attachments.append(InboundAttachment(
                    filename=_decode_header(filename) or "attachment",
                    mime_type=ctype,
                    payload=part.get_payload(decode=True) or b"",
                ))
                continue
            if ctype not in ("text/plain", "text/html"):
                continue
            payload = part.get_payload(decode=True) or b""
            text = _decode_bytes(payload, part.get_content_charset())
        except Exception as e:
            log.warning("Skipping undecodable MIME part: %s: %s", type(e).__name__, e)
            continue
        (plain if ctype == "text/plain" else markup).append(text)

    if plain:
        body = "\n".join(plain)
    else:
        body = "\n".join(_html_to_text(m) for m in markup)

    return InboundMessage(
        from_header=from_header,
        from_address=parseaddr(from_header)[1].lower(),
        subject=subject,
        body=body.strip(),
        attachments=attachments,
    )


# --- IMAP ---

class ImapSession:
    """One logged-in, folder-selected IMAP connection."""

    def __init__(self, conn: imaplib.IMAP4):
        self.conn = conn

    def list_unread(self) -> List[str]:
        try:
            status, data = self.conn.uid("search", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxConnectionError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise MailboxConnectionError(f"IMAP search failed: {status}")
        return [u.decode() for u in (data[0] or b"").split()]

    def fetch(self, uid: str) -> bytes:
        # BODY.PEEK[] leaves \Seen alone; we mark explicitly once processed
        status, data = self.conn.uid("fetch", uid, "(BODY.PEEK[])")
        if status != "OK":
            raise RfpDeskError(f"IMAP fetch {uid} failed: {status}")
        for item in data or []:
            if isinstance(item, tuple) and len(item) > 1:
                return item[1]
        raise RfpDeskError(f"IMAP fetch {uid} returned no body")

    def mark_read(self, uid: str):
        status, _ = self.conn.uid("store", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise RfpDeskError(f"IMAP store {uid} failed: {status}")


class ImapMailbox:
    def __init__(self, host: str, user: str, password: str, port: int = 993,
                 folder: str = "INBOX", timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.folder = folder
        self.timeout = timeout

    @contextmanager
    def connect(self) -> Iterator[ImapSession]:
        try:
            conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
        except OSError as e:
            raise MailboxConnectionError(f"cannot reach {self.host}:{self.port}: {e}") from e
        try:
            conn.login(self.user, self.password)
            status, _ = conn.select(self.folder)
            if status != "OK":
                raise MailboxConnectionError(f"cannot select folder {self.folder}")
        except (imaplib.IMAP4.error, OSError) as e:
            self._logout(conn)
            raise MailboxConnectionError(f"IMAP login/select failed: {e}") from e
        except MailboxConnectionError:
            self._logout(conn)
            raise
        log.info("Connected to %s as %s", self.host, self.user)
        try:
            yield ImapSession(conn)
        finally:
            self._logout(conn)

    @staticmethod
    def _logout(conn):
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            log.debug("IMAP logout failed: %s", e)


class DisabledMailbox:
    """Stand-in when no IMAP account is configured: every poll fails fast."""

    @contextmanager
    def connect(self):
        raise MailboxConnectionError("IMAP is not configured (set IMAP_HOST and IMAP_USER)")
        yield
