# ai_helpers.py
# OpenAI-backed oracle for RFP drafting, proposal extraction and proposal comparison.
# Every call is JSON-only; responses are validated into pydantic records here so
# nothing downstream ever sees raw model output.

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import OracleError
from .models import ComparisonReport, ProposalExtraction, RfpDraft

log = logging.getLogger(__name__)

OPENAI_MODEL = "gpt-4o-mini"
HISTORY_WINDOW = 6

R = TypeVar("R", bound=BaseModel)

DRAFT_SYSTEM = "You are a procurement assistant. Output JSON only."
EXTRACT_SYSTEM = "You extract structured bid data from vendor emails. Output JSON only."
COMPARE_SYSTEM = "You are a disciplined procurement evaluator. Output JSON only."

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def format_history(messages: Sequence[Any], max_messages: int = HISTORY_WINDOW) -> str:
    """Render the last few chat messages as prompt context."""
    recent = list(messages)[-max_messages:]
    if not recent:
        return ""
    labels = {"USER": "User", "ASSISTANT": "Assistant", "SYSTEM": "System"}
    lines = ["CONVERSATION HISTORY:"]
    for msg in recent:
        role = getattr(msg.role, "value", msg.role)
        lines.append(f"{labels.get(role, 'Assistant')}: {msg.content}")
    return "\n".join(lines) + "\n"


def draft_prompt(utterance: str, history: str, existing: Optional[Dict[str, str]]) -> str:
    if existing:
        context = (
            "This conversation already has an RFP that the user wants to change.\n"
            f"CURRENT RFP:\n- Title: \"{existing['title']}\"\n- Description: \"{existing['description']}\"\n"
            "Apply the requested changes and return the complete new version of the RFP."
        )
    else:
        context = (
            "There is no RFP yet. The user is starting one or still providing details for one."
        )
    return (
        f"{context}\n\n{history}\n"
        f"NEW USER MESSAGE: \"{utterance}\"\n\n"
        "Decide whether the conversation as a whole describes a procurement need "
        "(what to buy, quantities, specifications, budget, timeline).\n"
        "If it does, set isRfp to true and write a professional email subject and a detailed "
        "RFP email body for vendors with everything gathered so far.\n"
        "If it does not, set isRfp to false and use reason to ask for what is missing.\n\n"
        "Return ONLY a JSON object:\n"
        '{"isRfp": boolean, "emailSubject": string|null, "emailBody": string|null, "reason": string|null}'
    )


def extract_prompt(body: str, attachment_text: str, rfp_title: str, rfp_description: str) -> str:
    return (
        f"RFP TITLE: {rfp_title}\nRFP DESCRIPTION:\n{rfp_description}\n\n"
        f"VENDOR EMAIL:\n{body}\n\n"
        f"ATTACHMENT TEXT:\n{attachment_text or '(none)'}\n\n"
        "Extract the vendor's bid. Use null for anything the vendor did not state. "
        "aiScore is your 0-1 rating of how well the bid meets the RFP.\n"
        "Return ONLY a JSON object:\n"
        '{"price": number|null, "deliveryDays": integer|null, "warranty": string|null, '
        '"paymentTerms": string|null, "notes": string|null, "aiSummary": string|null, '
        '"aiScore": number}'
    )


def compare_prompt(rfp_title: str, rfp_description: str, bids: List[Dict[str, Any]]) -> str:
    return (
        f"RFP TITLE: {rfp_title}\nRFP DESCRIPTION:\n{rfp_description}\n\n"
        f"VENDOR BIDS:\n{json.dumps(bids, indent=2, default=str)}\n\n"
        "Compare the bids against the RFP on price, delivery, warranty and overall fit. "
        "Recommend one winner and rank every vendor.\n"
        "Return ONLY a JSON object:\n"
        '{"winner": {"name": string, "reason": string}, "comparisonSummary": string, '
        '"rankings": [{"vendorName": string, "rank": integer, "pros": [string], "cons": [string]}]}'
    )


class ExtractionOracle:
    """Wraps one OpenAI client. Built once at startup and handed to call sites."""

    def __init__(self, client, model: str = OPENAI_MODEL, timeout: float = 30.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    def _complete_json(self, system: str, prompt: str) -> Dict[str, Any]:
        if self.client is None:
            raise OracleError("OPENAI_API_KEY is not set")
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.1,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
            content = resp.choices[0].message.content or ""
        except Exception as e:
            raise OracleError(f"model call failed: {type(e).__name__}: {e}") from e

        cleaned = _FENCE.sub("", content).strip()
        try:
            data = json.loads(cleaned)
        except ValueError as e:
            raise OracleError(f"model returned non-JSON output: {cleaned[:200]!r}") from e
        if not isinstance(data, dict):
            raise OracleError(f"model returned {type(data).__name__}, expected an object")
        return data

    def _call(self, schema: Type[R], system: str, prompt: str) -> R:
        data = self._complete_json(system, prompt)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise OracleError(f"response does not match {schema.__name__}: {e.error_count()} errors") from e

    def draft_rfp(self, utterance: str, history: Sequence[Any] = (),
                  existing: Optional[Dict[str, str]] = None) -> RfpDraft:
        prompt = draft_prompt(utterance, format_history(history), existing)
        try:
            return self._call(RfpDraft, DRAFT_SYSTEM, prompt)
        except OracleError as e:
            log.warning("RFP drafting fell back: %s", e)
            return RfpDraft.fallback()

    def extract_proposal(self, body: str, attachment_text: str,
                         rfp_title: str, rfp_description: str) -> ProposalExtraction:
        prompt = extract_prompt(body, attachment_text, rfp_title, rfp_description)
        try:
            return self._call(ProposalExtraction, EXTRACT_SYSTEM, prompt)
        except OracleError as e:
            log.warning("Proposal extraction fell back: %s", e)
            return ProposalExtraction.fallback()

    def compare_proposals(self, rfp_title: str, rfp_description: str,
                          bids: List[Dict[str, Any]]) -> ComparisonReport:
        """No fallback here: a made-up ranking is worse than none. Raises OracleError."""
        return self._call(ComparisonReport, COMPARE_SYSTEM, compare_prompt(rfp_title, rfp_description, bids))


def build_client(api_key: Optional[str], timeout: float = 30.0):
    if not api_key or api_key.strip().lower() == "none":
        log.warning("OPENAI_API_KEY is not set; AI calls will use fallbacks")
        return None
    from openai import OpenAI
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=1)
