# tokens.py
# Tracking token embedded in outbound RFP mail: [RFP:<id>][VND:<id>]
#
# Replies come back re-wrapped and quoted by mail clients, so matching runs on a
# normalised copy of the body: quote markers are stripped from every line and all
# whitespace is removed before the literal prefixes are searched for.

import re
from typing import NamedTuple, Optional

from .errors import UnrecognizedTokenError

SEPARATOR = "-" * 40
IDENT = r"[A-Za-z0-9\-]+"

_RFP_FRAGMENT = re.compile(r"\[RFP:(" + IDENT + r")\]", re.IGNORECASE)
_VND_FRAGMENT = re.compile(r"\[VND:(" + IDENT + r")\]", re.IGNORECASE)
_QUOTE_PREFIX = re.compile(r"^[ \t]*(?:>[ \t]?)+", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")


class TrackingToken(NamedTuple):
    rfp_id: str
    vendor_id: str


def format_token(rfp_id: str, vendor_id: str) -> str:
    return f"[RFP:{rfp_id}][VND:{vendor_id}]"


def append_token(body: str, rfp_id: str, vendor_id: str) -> str:
    return (
        f"{body.rstrip()}\n\n{SEPARATOR}\n"
        "Please keep the reference below in your reply.\n"
        f"{format_token(rfp_id, vendor_id)}\n"
    )


def normalise(body: str) -> str:
    unquoted = _QUOTE_PREFIX.sub("", body or "")
    return _WHITESPACE.sub("", unquoted)


def find_token(body: str) -> Optional[TrackingToken]:
    """Return the first RFP/vendor pair in the body, or None if either half is missing."""
    flat = normalise(body)
    rfp = _RFP_FRAGMENT.search(flat)
    vendor = _VND_FRAGMENT.search(flat)
    if not rfp or not vendor:
        return None
    return TrackingToken(rfp.group(1), vendor.group(1))


def require_token(body: str) -> TrackingToken:
    token = find_token(body)
    if token is None:
        raise UnrecognizedTokenError("no [RFP:...][VND:...] token in message body")
    return token
