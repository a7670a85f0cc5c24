"""E2E tests walking one operation through negotiation, adjustment and settlement"""

import uuid
from datetime import date, timedelta
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from unittest.mock import AsyncMock, patch
from factor_engine.infrastructure.database.models import LedgerPosting, ReceivableInstallment


def responses_payload(version: dict, overrides: dict) -> dict:
    return {
        "version_id": version["id"],
        "responses": [
            {"item_id": item["operation_item_id"], **overrides[item["installment_id"]]}
            for item in version["items"]
        ],
    }


@patch("factor_engine.infrastructure.clients.ledger.LedgerClient.send_settlement_event", new_callable=AsyncMock)
def test_discount_negotiation_to_settlement(mock_webhook: AsyncMock, client: TestClient, db: Session, make_installment):
    """Test full negotiation: adjust, rework the package, resend and conclude twice"""
    factor = client.post("/v1/factors", json={"name": "Factor One", "code": "F1"}).json()
    installment_a = make_installment(100000, title_number="NF-A")
    installment_b = make_installment(50000, title_number="NF-B")
    installment_c = make_installment(20000, title_number="NF-C", custody_status="with_factor", factor_id=uuid.UUID(factor["id"]))
    ids = {"A": str(installment_a.id), "B": str(installment_b.id), "C": str(installment_c.id)}

    # Package with A and B
    operation = client.post("/v1/operations", json={"factor_id": factor["id"]}).json()
    op_url = f"/v1/operations/{operation['id']}"
    client.post(f"{op_url}/items", json={"action_type": "discount", "installment_id": ids["A"]})
    item_b = client.post(f"{op_url}/items", json={"action_type": "discount", "installment_id": ids["B"]}).json()

    version_1 = client.post(f"{op_url}/versions").json()
    assert version_1["version_number"] == 1
    assert version_1["gross_amount_cents"] == 150000
    assert [i["amount_snapshot_cents"] for i in version_1["items"]] == [100000, 50000]

    # Factor adjusts B
    sent = client.post(f"{op_url}/send").json()
    assert sent["status"] == "sent_to_factor"
    adjusted_due = (date.today() + timedelta(days=35)).isoformat()
    adjusted = client.post(
        f"{op_url}/responses",
        json=responses_payload(
            version_1,
            {
                ids["A"]: {"response_status": "accepted", "fee_amount_cents": 2000},
                ids["B"]: {
                    "response_status": "adjusted",
                    "adjusted_amount_cents": 48000,
                    "adjusted_due_date": adjusted_due,
                    "fee_amount_cents": 1000,
                },
            },
        ),
    ).json()
    assert adjusted["status"] == "in_adjustment"
    assert adjusted["costs_amount_cents"] == 3000

    # Drop B, buy back C, resend as version 2
    assert client.delete(f"{op_url}/items/{item_b['id']}").status_code == 204
    client.post(f"{op_url}/items", json={"action_type": "buyback", "installment_id": ids["C"]})
    version_2 = client.post(f"{op_url}/versions").json()
    assert version_2["version_number"] == 2
    assert version_2["gross_amount_cents"] == 120000
    assert client.post(f"{op_url}/send").json()["status"] == "sent_to_factor"

    resolved = client.post(
        f"{op_url}/responses",
        json=responses_payload(
            version_2,
            {
                ids["A"]: {"response_status": "accepted", "fee_amount_cents": 2000},
                ids["C"]: {"response_status": "accepted", "fee_amount_cents": 500},
            },
        ),
    ).json()
    assert resolved["status"] == "sent_to_factor"
    assert client.get(op_url).json()["ready_to_conclude"] is True

    # Conclude
    concluded = client.post(f"{op_url}/conclude").json()
    assert concluded["idempotent"] is False
    assert concluded["operation"]["status"] == "completed"
    assert concluded["totals"]["discount_amount_cents"] == 100000
    assert concluded["totals"]["buyback_amount_cents"] == 20000
    assert concluded["totals"]["factor_costs_amount_cents"] == 2500
    assert {(p["kind"], p["category"]): p["amount_cents"] for p in concluded["postings"]} == {
        ("ar_settlement", "none"): 100000,
        ("ap_entry", "none"): 20000,
        ("cost_entry", "fee"): 2500,
    }

    # Conclude again
    repeated = client.post(f"{op_url}/conclude").json()
    assert repeated["idempotent"] is True
    assert repeated["operation"]["status"] == "completed"
    assert db.query(LedgerPosting).count() == 3
    assert mock_webhook.await_count == 1

    # Custody follows the settlement
    db.expire_all()
    assert db.get(ReceivableInstallment, installment_a.id).custody_status == "with_factor"
    assert db.get(ReceivableInstallment, installment_b.id).custody_status == "own"
    assert db.get(ReceivableInstallment, installment_c.id).custody_status == "repurchased"

    # History is intact
    versions = client.get(f"{op_url}/versions").json()
    assert [v["version_number"] for v in versions] == [1, 2]
    assert versions[0]["total_items"] == 2


def test_cancel_draft_with_short_reason(client: TestClient):
    """Test cancel of a draft needs a reason of at least 3 characters"""
    factor = client.post("/v1/factors", json={"name": "Factor One"}).json()
    operation = client.post("/v1/operations", json={"factor_id": factor["id"]}).json()
    op_url = f"/v1/operations/{operation['id']}"

    rejected = client.post(f"{op_url}/cancel", json={"reason": "ok"})
    assert rejected.status_code == 422
    assert client.get(op_url).json()["operation"]["status"] == "draft"

    cancelled = client.post(f"{op_url}/cancel", json={"reason": "duplicate entry"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
