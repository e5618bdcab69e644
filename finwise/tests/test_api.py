"""Tests for the HTTP endpoints."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from finwise.main import app, build_services

ZOMATO_SMS = "Rs 1,400.00 spent using ICICI Bank Card XX2008 on 25-Sep-25 at ZOMATO."


@pytest.fixture
def client(config):
    services = build_services(config)
    with patch("finwise.main.get_services", return_value=services):
        yield TestClient(app)


class TestParseEndpoints:
    """Parsing without storage."""

    def test_parse(self, client):
        response = client.post("/parse", json={"text": ZOMATO_SMS})

        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "deterministic"
        assert body["transaction"]["merchant"] == "Zomato"
        assert client.get("/health").json()["transaction_count"] == 0

    def test_quick_parse(self, client):
        response = client.post("/parse/quick", json={"text": ZOMATO_SMS})
        assert response.json()["amount"] == 1400.0

    def test_empty_text_is_rejected(self, client):
        assert client.post("/parse", json={"text": ""}).status_code == 422


class TestTransactionEndpoints:
    """Ingest, list, edit and delete."""

    def test_ingest_then_edit_and_delete(self, client):
        ingested = client.post("/ingest", json={"source_id": "sms-1", "body": ZOMATO_SMS}).json()
        txn_id = ingested["transaction"]["id"]
        assert ingested["status"] == "added"

        listed = client.get("/transactions", params={"category": "Food & Dining"}).json()
        assert [t["id"] for t in listed] == [txn_id]

        edited = client.patch(f"/transactions/{txn_id}", json={"category": "Shopping"}).json()
        assert edited["category"] == "Shopping"
        assert edited["is_manually_edited"] is True

        assert client.delete(f"/transactions/{txn_id}").json() == {"deleted": 1}
        assert client.get(f"/transactions/{txn_id}").status_code == 404

    def test_unknown_category_edit_is_rejected(self, client):
        txn_id = client.post("/ingest", json={"source_id": "sms-1", "body": ZOMATO_SMS}).json()["transaction"]["id"]
        assert client.patch(f"/transactions/{txn_id}", json={"category": "Nope"}).status_code == 400

    def test_batch(self, client):
        response = client.post(
            "/ingest/batch",
            json={"messages": [{"source_id": "a", "body": ZOMATO_SMS}, {"source_id": "b", "body": ZOMATO_SMS}]},
        )
        assert response.json()["added"] == 1
        assert response.json()["duplicates"] == 1

    def test_batch_progress_can_be_read_back(self, client):
        summary = client.post("/ingest/batch", json={"messages": [{"source_id": "a", "body": ZOMATO_SMS}]}).json()

        progress = client.get(f"/progress/{summary['job_id']}").json()
        assert progress["status"] == "complete"
        assert progress["processed"] == 1

    def test_batch_uses_client_job_id(self, client):
        response = client.post(
            "/ingest/batch", json={"job_id": "sync-client-1", "messages": [{"source_id": "a", "body": ZOMATO_SMS}]}
        )
        assert response.json()["job_id"] == "sync-client-1"
        assert client.get("/progress/sync-client-1").json()["status"] == "complete"

    def test_bad_date_filter(self, client):
        assert client.get("/transactions", params={"start_date": "yesterday"}).status_code == 400


class TestOtherEndpoints:
    """Categories, recurring and statements."""

    def test_add_category(self, client):
        categories = client.post("/categories", json={"name": "Pets"}).json()["categories"]
        assert "Pets" in categories

    def test_recurring_statistics_empty(self, client):
        stats = client.get("/recurring/statistics").json()
        assert stats == {"total": 0, "upcoming": 0, "overdue": 0, "total_monthly_amount": 0.0}

    def test_statement_upload_requires_pdf(self, client):
        response = client.post("/statements/upload", files={"file": ("statement.csv", b"a,b", "text/csv")})
        assert response.status_code == 400

    def test_deactivate_category(self, client):
        categories = client.delete("/categories/Travel").json()["categories"]
        assert "Travel" not in categories
        assert client.delete("/categories/NoSuchCategory").status_code == 404

    def test_unknown_recurring_pattern(self, client):
        assert client.get("/recurring/00000000-0000-0000-0000-000000000000").status_code == 404


class TestManualEntry:
    """Hand-entered transactions."""

    def test_manual_transaction(self, client):
        response = client.post(
            "/transactions",
            json={"amount": 250.0, "type": "debit", "merchant": "Corner Bakery", "timestamp": "2025-10-01T09:30:00"},
        )

        body = response.json()
        assert body["method"] == "manual"
        assert body["confidence"] == 1.0
        assert body["transaction"]["category"] == "Food & Dining"
        assert body["transaction"]["is_manually_edited"] is True

    def test_manual_transaction_unknown_category(self, client):
        response = client.post(
            "/transactions", json={"amount": 10.0, "type": "debit", "merchant": "Shop", "category": "Nope"}
        )
        assert response.status_code == 400

    def test_offset_timestamp_is_stored_as_local_time(self, client):
        response = client.post(
            "/transactions",
            json={"amount": 499.0, "type": "debit", "merchant": "Netflix", "timestamp": "2025-10-01T09:30:00Z"},
        )

        timestamp = response.json()["transaction"]["timestamp"]
        assert not timestamp.endswith("Z")
        assert "+" not in timestamp
        assert client.post("/recurring/refresh").status_code == 200


class TestInsightsEndpoints:
    """Dashboard aggregates."""

    def test_summary_and_months(self, client):
        client.post("/ingest", json={"source_id": "sms-1", "body": ZOMATO_SMS})

        summary = client.get("/insights/summary", params={"year": 2025, "month": 9}).json()
        assert summary["total_spending"] == 1400.0
        assert summary["categories"] == [{"category": "Food & Dining", "amount": 1400.0}]
        assert client.get("/insights/months").json() == {"months": ["2025-09"]}
        assert client.get("/insights/accounts").json() == [{"account_suffix": "2008", "transaction_count": 1}]
        assert client.get("/insights/merchants").json() == {"merchants": ["Zomato"]}

    def test_invalid_month(self, client):
        assert client.get("/insights/summary", params={"year": 2025, "month": 13}).status_code == 400
