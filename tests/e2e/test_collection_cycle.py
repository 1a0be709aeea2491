"""
E2E test of a full collection cycle through the HTTP API.

A sale is created, each month's postal file is exported, and the postal
system's answer (every reference cleared) is fed back until nothing is
left pending.

Scenarios:
- Clean cycle: every withdrawal clears, the sale completes
- Blocked month: a blocked withdrawal stays pending and shows as overdue
"""

import pytest
from fastapi.testclient import TestClient


def clear_month(client: TestClient, month: str, status: int = 0) -> dict:
    """Export a month and answer every exported reference with `status`"""
    export = client.get("/v1/postal/export", params={"month": month}).json()
    batch = "\n".join(f"{record['reference_code']} {status}" for record in export["records"])
    response = client.post("/v1/postal/import", content=batch, headers={"Content-Type": "text/plain"})
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
def test_clean_cycle_completes_sale(client, create_sale, seed, ledger):
    """
    12000 with 2000 down over 2 months, split across two references.
    Expected: each month clears 5000, the sale ends completed and fully paid
    """
    created = create_sale(total_amount=12000, down_payment=2000, term_months=2, reference_count=2)
    assert created.status_code == 201
    sale_id = created.json()["sale_id"]
    assert [m["due_date"] for m in created.json()["months"]] == ["2025-02-28", "2025-03-30"]

    for month in ("2025-02", "2025-03"):
        result = clear_month(client, month)
        assert result["cleared"] == 2, f"Both references should clear in {month}"
        assert result["cleared_amount"] == 5000
        assert result["unresolved"] == 0

    schedule = client.get(f"/v1/sales/{sale_id}/schedule").json()
    assert all(i["status"] == "paid" for i in schedule["installments"])
    assert all(m["status"] == "paid" for m in schedule["months"])

    portal = client.get("/v1/portal/installments", params={"payer_account": seed.payer_account}).json()
    sale = portal["sales"][0]
    assert sale["status"] == "completed"
    assert sale["paid_amount"] == 12000

    assert len(ledger.of_type("SCHEDULE_CREATED")) == 1
    assert len(ledger.of_type("POSTAL_BATCH_RECONCILED")) == 2


@pytest.mark.integration
def test_blocked_withdrawal_stays_pending(client, create_sale, seed):
    """
    First month comes back blocked.
    Expected: the installment stays pending with postal status blocked, and a
    later cleared line for the same reference pays that oldest row first
    """
    sale_id = create_sale(reference_count=1).json()["sale_id"]

    blocked = clear_month(client, "2025-02", status=2)
    assert blocked["blocked"] == 1
    assert blocked["cleared"] == 0

    february = client.get(f"/v1/sales/{sale_id}/schedule").json()["months"][0]
    assert february["status"] == "upcoming"
    assert february["installments"][0]["postal_status"] == "blocked"

    cleared = clear_month(client, "2025-03")
    assert cleared["updates"][0]["due_date"] == "2025-02-28"

    months = client.get(f"/v1/sales/{sale_id}/schedule").json()["months"]
    assert [m["status"] for m in months] == ["paid", "upcoming", "upcoming"]
