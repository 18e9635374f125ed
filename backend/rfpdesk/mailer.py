# mailer.py
# Outbound RFP mail. SMTP when configured, otherwise a JSON outbox on disk (simulated send).

import logging
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional, Sequence

from . import storage
from .models import VendorDispatch
from .tokens import append_token

log = logging.getLogger(__name__)


class SmtpMailer:
    def __init__(self, host: str, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, sender: Optional[str] = None,
                 timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user or "rfp@localhost"
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str):
        msg = EmailMessage()
        msg["From"] = f"Procurement <{self.sender}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(msg)
        log.info("Email sent to %s", to)


class OutboxMailer:
    """Appends each message to outbox.json instead of sending it."""

    def __init__(self, path: Path):
        self.path = path

    def send(self, to: str, subject: str, body: str):
        outbox = storage.read_json(self.path)
        outbox.append({
            "id": str(uuid.uuid4()),
            "to": to,
            "subject": subject,
            "body": body,
            "queued_at": datetime.now(timezone.utc).isoformat(),
        })
        storage.write_json(self.path, outbox)
        log.info("Email to %s written to outbox (simulated send)", to)


def dispatch(mailer, rfp_id: str, subject: str, body: str, recipients: Sequence) -> List[VendorDispatch]:
    """Send the RFP to each vendor with its own tracking token. One failure never stops the rest."""
    report = []
    for vendor in recipients:
        try:
            mailer.send(vendor.email, subject, append_token(body, rfp_id, vendor.id))
            report.append(VendorDispatch(vendor_id=vendor.id, email=vendor.email, ok=True))
        except Exception as e:
            log.error("Failed to send RFP %s to %s: %s: %s", rfp_id, vendor.email, type(e).__name__, e,
                      extra={"rfp_id": rfp_id, "vendor_id": vendor.id})
            report.append(VendorDispatch(vendor_id=vendor.id, email=vendor.email, ok=False,
                                         error=f"{type(e).__name__}: {e}"))
    return report


def summarize(report: Sequence[VendorDispatch], names: dict) -> str:
    sent = [names.get(r.vendor_id, r.email) for r in report if r.ok]
    failed = [names.get(r.vendor_id, r.email) for r in report if not r.ok]
    lines = [f"RFP sent to {len(sent)} of {len(report)} vendors."]
    if sent:
        lines.append("Delivered: " + ", ".join(sent))
    if failed:
        lines.append("Failed: " + ", ".join(failed))
    return "\n".join(lines)
