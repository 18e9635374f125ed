# models.py
# Pydantic models: API request/response bodies and the oracle's JSON records.

import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import (
    BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator,
)

from .tables import RfpStatus, Role

EXTRACTION_ERROR_NOTE = "Error during AI extraction"
DRAFT_FALLBACK_REASON = (
    "I need more details about your procurement needs. "
    "What are you looking to purchase, and what are your requirements?"
)


# --- oracle records ---

class OracleRecord(BaseModel):
    # camelCase on the wire, snake_case in python
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RfpDraft(OracleRecord):
    is_rfp: bool = Field(alias="isRfp")
    email_subject: Optional[str] = Field(default=None, alias="emailSubject")
    email_body: Optional[str] = Field(default=None, alias="emailBody")
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _rfp_needs_content(self):
        if self.is_rfp and not (self.email_subject and self.email_body):
            raise ValueError("isRfp=true requires emailSubject and emailBody")
        return self

    @classmethod
    def fallback(cls) -> "RfpDraft":
        return cls(is_rfp=False, reason=DRAFT_FALLBACK_REASON)


class ProposalExtraction(OracleRecord):
    price: Optional[float] = None
    delivery_days: Optional[int] = Field(default=None, alias="deliveryDays")
    warranty: Optional[str] = None
    payment_terms: Optional[str] = Field(default=None, alias="paymentTerms")
    notes: Optional[str] = None
    ai_summary: Optional[str] = Field(default=None, alias="aiSummary")
    ai_score: float = Field(default=0.0, alias="aiScore")

    @field_validator("price", mode="before")
    @classmethod
    def _money(cls, v):
        # "$5,000" / "5,000.00 USD"
        if isinstance(v, str):
            cleaned = re.sub(r"[^\d.\-]", "", v)
            if not cleaned:
                return None
            return float(cleaned)
        return v

    @field_validator("delivery_days", mode="before")
    @classmethod
    def _days(cls, v):
        if isinstance(v, str):
            m = re.search(r"\d+", v)
            return int(m.group(0)) if m else None
        if isinstance(v, float):
            return int(round(v))
        return v

    @field_validator("warranty", "payment_terms", "notes", "ai_summary", mode="before")
    @classmethod
    def _text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("ai_score", mode="before")
    @classmethod
    def _score(cls, v):
        if v is None:
            return 0.0
        return v

    @field_validator("ai_score")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, v))

    @classmethod
    def fallback(cls) -> "ProposalExtraction":
        return cls(ai_score=0.0, notes=EXTRACTION_ERROR_NOTE)


class Winner(OracleRecord):
    name: str
    reason: str = ""


class Ranking(OracleRecord):
    vendor_name: str = Field(alias="vendorName")
    rank: int
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class ComparisonReport(OracleRecord):
    winner: Winner
    comparison_summary: str = Field(alias="comparisonSummary")
    rankings: List[Ranking] = Field(default_factory=list)


# --- API bodies ---

class ApiRequest(BaseModel):
    # clients send camelCase; snake_case is accepted too
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(ApiRequest):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    data: str = Field(min_length=3)

    @field_validator("data")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("A valid natural language description is required to create an RFP.")
        return v


class FinalizeRequest(ApiRequest):
    session_id: str = Field(alias="sessionId")
    vendor_ids: List[str] = Field(alias="vendorIds")
    is_change: bool = Field(default=False, alias="isChange")
    title: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _override_fields(self):
        if self.is_change:
            if not (self.title and self.title.strip() and self.description and self.description.strip()):
                raise ValueError("title and description are required when is_change is true")
        return self


class CompareRequest(ApiRequest):
    session_id: str = Field(alias="sessionId")


class VendorCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr


class Vendor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str


class RFP(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    status: RfpStatus
    created_at: datetime
    sent_at: Optional[datetime] = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    role: Role
    content: str
    is_rfp: bool = False
    created_at: datetime


class ChatSessionSummary(BaseModel):
    id: str
    created_at: datetime
    rfp_status: Optional[RfpStatus] = None


class ChatTranscript(BaseModel):
    session_id: str
    rfp: Optional[RFP] = None
    messages: List[ChatMessage] = Field(default_factory=list)


class ChatReply(BaseModel):
    session_id: str
    is_rfp: bool
    message: ChatMessage
    rfp: Optional[RFP] = None


class Attachment(BaseModel):
    filename: str
    mime_type: str


class Proposal(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rfp_id: str
    vendor_id: str
    price: Optional[float] = None
    delivery_days: Optional[int] = None
    warranty: Optional[str] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_score: float = 0.0
    raw_email_body: str = ""
    email_from: str
    email_subject: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    status: str = "RECEIVED"
    created_at: datetime
    updated_at: datetime


class ProposalMail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    raw_email_body: str
    email_subject: Optional[str] = None
    email_from: str


class VendorDispatch(BaseModel):
    vendor_id: str
    email: str
    ok: bool
    error: Optional[str] = None


class FinalizeResult(BaseModel):
    session_id: str
    rfp: RFP
    dispatch: List[VendorDispatch]


class PollSummary(BaseModel):
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    skipped: Dict[str, List[str]] = Field(default_factory=dict)
    failed: List[str] = Field(default_factory=list)


class ProposalMails(BaseModel):
    mails: List[ProposalMail]
    proposal_exists: bool
    poll: Optional[PollSummary] = None
    poll_error: Optional[str] = None


class ComparisonResult(BaseModel):
    report: ComparisonReport
    message: ChatMessage
