"""HTTP surface: drafting, sending, reply ingestion, comparison and closing an RFP."""

import threading
import time
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from conftest import GOOD_EXTRACTION, FakeMailbox, FakeMailer, FakeOpenAI, make_reply, reply_body
from rfpdesk.ai_helpers import ExtractionOracle
from rfpdesk.config import Settings
from rfpdesk.drafting import COMPARE_REQUEST
from rfpdesk.main import Services, create_app
from rfpdesk.poller import MailboxPoller

DRAFT = {"isRfp": True, "emailSubject": "RFP: 20 laptops",
         "emailBody": "We need 20 laptops with 16GB RAM, delivered within 30 days.", "reason": None}
REPORT = {
    "winner": {"name": "Vendor One", "reason": "Lowest price."},
    "comparisonSummary": "Vendor One is cheaper.",
    "rankings": [{"vendorName": "Vendor One", "rank": 1, "pros": ["price"], "cons": []}],
}


@pytest.fixture
def api(db, tmp_path):
    """Factory for a TestClient wired to fakes. Yields (client, services, mailbox)."""

    @contextmanager
    def _make(*responses, mailbox=None, mailer=None):
        mailbox = mailbox or FakeMailbox()
        oracle = ExtractionOracle(FakeOpenAI(*(responses or (DRAFT,))), model="test-model", timeout=5)
        services = Services(db=db, oracle=oracle, mailer=mailer or FakeMailer(),
                            poller=MailboxPoller(mailbox, oracle, db))
        settings = Settings(data_dir=tmp_path, database_url="sqlite://")
        with TestClient(create_app(settings, services)) as client:
            yield client, services, mailbox

    return _make


def start_rfp(client):
    resp = client.post("/api/v1/chat", json={"data": "I need 20 laptops for the sales team"})
    assert resp.status_code == 200
    return resp.json()


def transcript(client, session_id):
    return client.get(f"/api/v1/chat/{session_id}").json()["messages"]


class TestChat:

    def test_health(self, api):
        with api() as (client, _, _):
            assert client.get("/health").json() == {"status": "ok"}

    def test_first_message_creates_draft(self, api):
        with api() as (client, _, _):
            reply = start_rfp(client)
            assert reply["is_rfp"] is True
            assert reply["rfp"]["status"] == "DRAFT"
            assert reply["rfp"]["title"] == "RFP: 20 laptops"
            assert reply["message"]["content"].startswith("RFP Created!")

            messages = transcript(client, reply["session_id"])
            assert [m["role"] for m in messages] == ["USER", "ASSISTANT", "SYSTEM"]
            assert messages[1]["is_rfp"] is True

    def test_follow_up_updates_same_rfp(self, api):
        revised = {**DRAFT, "emailSubject": "RFP: 30 laptops"}
        with api(DRAFT, revised) as (client, _, _):
            first = start_rfp(client)
            second = client.post("/api/v1/chat", json={"session_id": first["session_id"],
                                                       "data": "make it 30 laptops"}).json()
            assert second["rfp"]["id"] == first["rfp"]["id"]
            assert second["rfp"]["title"] == "RFP: 30 laptops"
            assert second["message"]["content"].startswith("RFP Updated!")

    def test_not_an_rfp(self, api):
        with api({"isRfp": False, "reason": "What do you want to buy?"}) as (client, _, _):
            reply = client.post("/api/v1/chat", json={"data": "hello there"}).json()
            assert reply["is_rfp"] is False
            assert reply["rfp"] is None
            assert reply["message"]["content"] == "What do you want to buy?"

    @pytest.mark.parametrize("data", ["", "hi", "     "])
    def test_input_too_short(self, api, data):
        with api() as (client, _, _):
            assert client.post("/api/v1/chat", json={"data": data}).status_code == 422

    def test_unknown_session(self, api):
        with api() as (client, _, _):
            assert client.get("/api/v1/chat/nope").status_code == 404
            assert client.post("/api/v1/chat", json={"session_id": "nope", "data": "laptops"}).status_code == 404

    def test_history_lists_sessions(self, api):
        with api() as (client, _, _):
            reply = start_rfp(client)
            sessions = client.get("/api/v1/chat/history").json()
            assert [s["id"] for s in sessions] == [reply["session_id"]]
            assert sessions[0]["rfp_status"] == "DRAFT"


class TestFinalize:

    def test_partial_send_is_reported(self, api, directory):
        with api(mailer=FakeMailer(fail_for={"bids@v2.example"})) as (client, services, _):
            sid = start_rfp(client)["session_id"]
            resp = client.post("/api/v1/chat/finalize", json={
                "session_id": sid, "vendor_ids": [directory.v1.id, directory.v2.id],
            })
            assert resp.status_code == 200
            body = resp.json()
            assert body["rfp"]["status"] == "SENT"
            assert [d["ok"] for d in body["dispatch"]] == [True, False]
            assert [m["to"] for m in services.mailer.sent] == ["sales@v1.example"]

            last = transcript(client, sid)[-1]
            assert last["role"] == "SYSTEM"
            assert last["content"].startswith("RFP sent to 1 of 2 vendors.")
            assert "Failed: Vendor Two" in last["content"]

    def test_override_title_and_description(self, api, directory):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            body = client.post("/api/v1/chat/finalize", json={
                "session_id": sid, "vendor_ids": [directory.v1.id],
                "is_change": True, "title": "Edited", "description": "Edited body",
            }).json()
            assert body["rfp"]["title"] == "Edited"

    def test_change_without_title_is_invalid(self, api, directory):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            resp = client.post("/api/v1/chat/finalize", json={
                "session_id": sid, "vendor_ids": [directory.v1.id], "is_change": True,
            })
            assert resp.status_code == 422

    def test_unknown_vendor_sends_nothing(self, api, directory):
        with api() as (client, services, _):
            reply = start_rfp(client)
            resp = client.post("/api/v1/chat/finalize", json={
                "session_id": reply["session_id"], "vendor_ids": [directory.v1.id, "ghost"],
            })
            assert resp.status_code == 400
            assert resp.json()["unknown_vendor_ids"] == ["ghost"]
            assert services.mailer.sent == []
            assert client.get(f"/api/v1/chat/{reply['session_id']}").json()["rfp"]["status"] == "DRAFT"

    def test_chat_after_send_is_refused(self, api, directory):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            client.post("/api/v1/chat/finalize", json={"session_id": sid, "vendor_ids": [directory.v1.id]})
            before = len(transcript(client, sid))
            resp = client.post("/api/v1/chat", json={"session_id": sid, "data": "add 5 monitors"})
            assert resp.status_code == 409
            assert len(transcript(client, sid)) == before

    def test_send_twice_is_refused(self, api, directory):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            payload = {"session_id": sid, "vendor_ids": [directory.v1.id]}
            assert client.post("/api/v1/chat/finalize", json=payload).status_code == 200
            assert client.post("/api/v1/chat/finalize", json=payload).status_code == 409


class TestProposalsAndComparison:

    def send(self, client, directory):
        reply = start_rfp(client)
        client.post("/api/v1/chat/finalize", json={
            "session_id": reply["session_id"], "vendor_ids": [directory.v1.id, directory.v2.id],
        })
        return reply["session_id"], reply["rfp"]["id"]

    def test_full_round(self, api, directory):
        with api(DRAFT, GOOD_EXTRACTION, REPORT) as (client, _, mailbox):
            sid, rfp_id = self.send(client, directory)
            mailbox.deliver("1", make_reply("Vendor One <sales@v1.example>", reply_body(rfp_id, directory.v1.id)))

            mails = client.get(f"/api/v1/proposals/mails/{sid}").json()
            assert mails["poll"]["created"] == ["1"]
            assert mails["poll_error"] is None
            assert mails["proposal_exists"] is True
            assert mails["mails"][0]["email_from"] == "sales@v1.example"

            proposal = client.get(f"/api/v1/proposals/{mails['mails'][0]['id']}").json()
            assert proposal["price"] == 5000.0
            assert proposal["vendor_id"] == directory.v1.id

            result = client.post("/api/v1/proposals/compare", json={"session_id": sid})
            assert result.status_code == 200
            assert result.json()["report"]["winner"]["name"] == "Vendor One"
            messages = transcript(client, sid)
            assert messages[-2]["content"] == COMPARE_REQUEST
            assert messages[-1]["role"] == "ASSISTANT"
            assert messages[-1]["content"].startswith("Winner Recommendation: Vendor One.")

            done = client.post(f"/api/v1/chat/{sid}/complete").json()
            assert done["status"] == "COMPLETED"

    def test_compare_without_proposals(self, api, directory):
        with api() as (client, _, _):
            sid, _ = self.send(client, directory)
            before = len(transcript(client, sid))
            resp = client.post("/api/v1/proposals/compare", json={"session_id": sid})
            assert resp.status_code == 400
            assert resp.json()["detail"] == "No proposals found to compare."
            assert len(transcript(client, sid)) == before

    def test_compare_oracle_failure(self, api, directory):
        with api(DRAFT, GOOD_EXTRACTION, "not json at all") as (client, _, mailbox):
            sid, rfp_id = self.send(client, directory)
            mailbox.deliver("1", make_reply("sales@v1.example", reply_body(rfp_id, directory.v1.id)))
            assert client.post("/api/v1/mailbox/poll").json()["created"] == ["1"]
            before = len(transcript(client, sid))
            assert client.post("/api/v1/proposals/compare", json={"session_id": sid}).status_code == 502
            assert len(transcript(client, sid)) == before

    def test_unreachable_mailbox(self, api, directory):
        with api(mailbox=FakeMailbox(fail=True)) as (client, _, _):
            sid, _ = self.send(client, directory)
            mails = client.get(f"/api/v1/proposals/mails/{sid}").json()
            assert mails["poll_error"]
            assert mails["mails"] == []
            assert mails["proposal_exists"] is False
            assert client.post("/api/v1/mailbox/poll").status_code == 503

    def test_unknown_proposal(self, api):
        with api() as (client, _, _):
            assert client.get("/api/v1/proposals/missing").status_code == 404


class TestClosing:

    def test_cancel_draft(self, api):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            assert client.post(f"/api/v1/chat/{sid}/cancel").json()["status"] == "CANCELLED"
            assert client.post(f"/api/v1/chat/{sid}/cancel").status_code == 409
            assert transcript(client, sid)[-1]["content"].startswith("RFP cancelled")

    def test_complete_requires_in_progress(self, api, directory):
        with api() as (client, _, _):
            sid = start_rfp(client)["session_id"]
            assert client.post(f"/api/v1/chat/{sid}/complete").status_code == 409


class TestVendors:

    def test_create_is_upsert_by_email(self, api):
        with api() as (client, _, _):
            first = client.post("/api/v1/vendors", json={"name": "Acme", "email": "Sales@Acme.com"}).json()
            again = client.post("/api/v1/vendors", json={"name": "Acme Corp", "email": "sales@acme.com"}).json()
            assert first["email"] == "sales@acme.com"
            assert again["id"] == first["id"]
            assert again["name"] == "Acme"

    def test_invalid_email(self, api):
        with api() as (client, _, _):
            assert client.post("/api/v1/vendors", json={"name": "Acme", "email": "not-an-email"}).status_code == 422

    def test_list_sorted_by_name(self, api, directory):
        with api() as (client, _, _):
            names = [v["name"] for v in client.get("/api/v1/vendors").json()]
            assert names == ["Vendor One", "Vendor Three", "Vendor Two"]


class TestCamelCaseBodies:

    def test_chat_session_id(self, api):
        revised = {**DRAFT, "emailSubject": "RFP: 30 laptops"}
        with api(DRAFT, revised) as (client, _, _):
            first = start_rfp(client)
            second = client.post("/api/v1/chat", json={"sessionId": first["session_id"],
                                                       "data": "make it 30 of them"}).json()
            assert second["session_id"] == first["session_id"]
            assert second["rfp"]["id"] == first["rfp"]["id"]
            assert len(client.get("/api/v1/chat/history").json()) == 1

    def test_finalize_and_compare(self, api, directory):
        with api() as (client, services, _):
            sid = start_rfp(client)["session_id"]
            resp = client.post("/api/v1/chat/finalize", json={
                "sessionId": sid, "vendorIds": [directory.v1.id],
                "isChange": True, "title": "Edited", "description": "Edited body",
            })
            assert resp.status_code == 200
            assert resp.json()["rfp"]["title"] == "Edited"
            assert [m["to"] for m in services.mailer.sent] == ["sales@v1.example"]
            assert client.post("/api/v1/proposals/compare", json={"sessionId": sid}).status_code == 400


class SlowPoller:
    def __init__(self):
        self.started = threading.Event()
        self.finished = threading.Event()

    def run(self):
        self.started.set()
        time.sleep(0.3)
        self.finished.set()


class TestScheduledPolling:

    def test_shutdown_waits_for_running_poll(self, db, tmp_path):
        slow = SlowPoller()
        services = Services(db=db, oracle=ExtractionOracle(None), mailer=FakeMailer(), poller=slow)
        settings = Settings(data_dir=tmp_path, database_url="sqlite://", poll_interval_seconds=1)
        with TestClient(create_app(settings, services)):
            assert slow.started.wait(timeout=5)
        assert slow.finished.is_set()
