"""Tests for document creation, verification and CRUD operations."""

import json
import logging

import pytest

from frappe_mcp import documents
from frappe_mcp.documents import (
    RECONCILE_VOUCHERS_METHOD,
    create_document,
    create_document_with_retry,
    delete_document,
    get_document,
    list_documents,
    log_operation,
    new_operation_id,
    reconcile_bank_transaction,
    verify_document_creation,
)
from frappe_mcp.errors import FrappeApiError, InvalidArgument, MissingArgument, VerificationFailure


# ──────────────────────────────────────────────────────────────
# Verification
# ──────────────────────────────────────────────────────────────
class TestVerifyDocumentCreation:
    async def test_missing_name_fails_without_network(self, client, fake_frappe):
        result = await verify_document_creation(client, "Customer", {"customer_name": "John"}, {})

        assert not result.success
        assert result.message == "Response does not contain a document name"
        assert fake_frappe.requests == []

    async def test_direct_fetch(self, client, fake_frappe):
        fake_frappe.add("Customer", {"name": "CUST-001"})

        result = await verify_document_creation(client, "Customer", {}, {"name": "CUST-001"})

        assert result.success
        assert result.message == "Document verified by direct fetch"
        assert fake_frappe.count("GET", "/api/resource/Customer") == 1

    async def test_falls_back_to_name_filter(self, client, fake_frappe):
        fake_frappe.get_status = 404
        fake_frappe.add("ToDo", {"name": "TD-1", "title": "Call back", "description": "Call back"})

        result = await verify_document_creation(
            client, "ToDo", {"name": "TD-1", "title": "Other", "description": "Other"}, {"name": "TD-1"}
        )

        assert result.success
        assert result.message == "Document verified by filter search"
        list_request = fake_frappe.requests[-1]
        assert json.loads(list_request.url.params["filters"]) == [["name", "=", "TD-1"]]
        assert list_request.url.params["limit_page_length"] == "5"

    async def test_title_filter_when_no_name_submitted(self, client, fake_frappe):
        fake_frappe.get_status = 500
        fake_frappe.add("Project", {"name": "PROJ-0001", "title": "Migration"})

        result = await verify_document_creation(client, "Project", {"title": "Migration"}, {"name": "PROJ-0001"})

        assert result.success
        assert json.loads(fake_frappe.requests[-1].url.params["filters"]) == [["title", "=", "Migration"]]

    async def test_description_filter_uses_first_20_chars(self, client, fake_frappe):
        fake_frappe.get_status = 404
        description = "Follow up with the customer about the overdue invoice"
        fake_frappe.add("ToDo", {"name": "TD-9", "description": description})

        result = await verify_document_creation(client, "ToDo", {"description": description}, {"name": "TD-9"})

        assert result.success
        filters = json.loads(fake_frappe.requests[-1].url.params["filters"])
        assert filters == [["description", "like", f"%{description[:20]}%"]]

    async def test_no_suitable_filters(self, client, fake_frappe):
        fake_frappe.get_status = 404

        result = await verify_document_creation(client, "Customer", {"customer_name": "John"}, {"name": "CUST-1"})

        assert not result.success
        assert "no suitable filters available" in result.message
        assert fake_frappe.count("GET", "/api/resource/Customer") == 1

    async def test_mismatch_is_distinct_from_not_found(self, client, fake_frappe):
        fake_frappe.get_status = 404
        fake_frappe.list_results = [{"name": "TD-2"}, {"name": "TD-3"}]

        result = await verify_document_creation(client, "ToDo", {"title": "Dup"}, {"name": "TD-1"})

        assert not result.success
        assert result.message == "Found 2 documents matching filters, but none match the expected name TD-1"

    async def test_not_found(self, client, fake_frappe):
        fake_frappe.get_status = 404

        result = await verify_document_creation(client, "ToDo", {"title": "Ghost"}, {"name": "TD-1"})

        assert not result.success
        assert result.message == "No documents found matching the creation filters"

    async def test_fetched_name_mismatch_falls_back_to_search(self, client, fake_frappe):
        fake_frappe.docs[("Note", "NOTE-2")] = {"name": "NOTE-1", "title": "Old"}
        fake_frappe.list_results = [{"name": "NOTE-2"}]

        result = await verify_document_creation(client, "Note", {"title": "Old"}, {"name": "NOTE-2"})

        assert result.success
        assert result.message == "Document verified by filter search"


# ──────────────────────────────────────────────────────────────
# Retrying creator
# ──────────────────────────────────────────────────────────────
class TestCreateDocumentWithRetry:
    async def test_single_attempt_on_success(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.append({"name": "CUST-001"})
        fake_frappe.add("Customer", {"name": "CUST-001", "customer_name": "John Doe"})

        result = await create_document_with_retry(client, "Customer", {"customer_name": "John Doe"})

        assert result["name"] == "CUST-001"
        assert result["_verification"] == {"success": True, "message": "Document verified by direct fetch"}
        assert fake_frappe.count("POST", "/api/resource/Customer") == 1
        assert sleeps == []

    async def test_exhaustion_waits_1_2_4_and_raises_verification_failure(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.extend([{}, {}, {}])

        with pytest.raises(VerificationFailure) as exc_info:
            await create_document_with_retry(client, "Customer", {"customer_name": "John Doe"})

        assert "does not contain a document name" in str(exc_info.value)
        assert fake_frappe.count("POST", "/api/resource/Customer") == 3
        assert sleeps == [1.0, 2.0, 4.0]
        assert sum(sleeps) >= 7

    async def test_success_on_second_attempt_stops(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.extend([{}, {"name": "CUST-002"}, {"name": "CUST-003"}])
        fake_frappe.add("Customer", {"name": "CUST-002"})

        result = await create_document_with_retry(client, "Customer", {"customer_name": "Jane"})

        assert result["name"] == "CUST-002"
        assert fake_frappe.count("POST", "/api/resource/Customer") == 2
        assert sleeps == [1.0]

    async def test_create_errors_are_retried_and_last_one_raised(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.extend([500, 500, 417])

        with pytest.raises(FrappeApiError) as exc_info:
            await create_document_with_retry(client, "Customer", {"customer_name": "John Doe"})

        assert exc_info.value.status_code == 417
        assert fake_frappe.count("POST", "/api/resource/Customer") == 3
        assert sleeps == [1.0, 2.0, 4.0]

    async def test_null_data_is_retried_with_full_backoff(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.extend([None, None, None])

        with pytest.raises(FrappeApiError) as exc_info:
            await create_document_with_retry(client, "Customer", {"customer_name": "John Doe"})

        assert "Invalid response format" in exc_info.value.message
        assert fake_frappe.count("POST", "/api/resource/Customer") == 3
        assert sleeps == [1.0, 2.0, 4.0]

    async def test_create_error_then_success(self, client, fake_frappe, sleeps):
        fake_frappe.create_responses.append(503)

        result = await create_document_with_retry(client, "ToDo", {"description": "Ship it"})

        assert result["_verification"]["success"]
        assert sleeps == [1.0]


class TestCreateDocument:
    async def test_requires_values(self, client):
        with pytest.raises(MissingArgument):
            await create_document(client, "Customer", {})

    async def test_logs_start_and_success(self, client, fake_frappe, sleeps, caplog):
        with caplog.at_level(logging.INFO, logger="frappe_mcp.operations"):
            result = await create_document(client, "ToDo", {"description": "Write tests"})

        stages = [r.args[1] for r in caplog.records if r.name == "frappe_mcp.operations"]
        assert stages == ["start", "success"]
        assert result["name"] == "TODO-001"

    async def test_logs_failure_when_verification_never_succeeds(self, client, fake_frappe, sleeps, caplog):
        fake_frappe.create_responses.extend([{}, {}, {}])

        with caplog.at_level(logging.INFO, logger="frappe_mcp.operations"):
            with pytest.raises(VerificationFailure):
                await create_document(client, "ToDo", {"description": "Never lands"})

        stages = [r.args[1] for r in caplog.records if r.name == "frappe_mcp.operations"]
        assert stages == ["start", "failure"]


def test_operation_ids_are_unique_within_a_millisecond(monkeypatch):
    monkeypatch.setattr(documents.time, "time", lambda: 1700000000.0)

    ids = {new_operation_id("Customer") for _ in range(100)}

    assert len(ids) == 100
    assert all(i.startswith("create_Customer_1700000000000_") for i in ids)


def test_log_operation_never_raises(caplog):
    circular: dict = {}
    circular["self"] = circular

    with caplog.at_level(logging.INFO, logger="frappe_mcp.operations"):
        log_operation("op-1", "start", circular)

    assert "not JSON serializable" in caplog.text


def test_log_operation_survives_deep_nesting(caplog):
    nested: list = []
    for _ in range(5000):
        nested = [nested]

    with caplog.at_level(logging.INFO, logger="frappe_mcp.operations"):
        log_operation("op-2", "start", nested)

    assert "not JSON serializable" in caplog.text


# ──────────────────────────────────────────────────────────────
# CRUD and method calls
# ──────────────────────────────────────────────────────────────
async def test_get_document_field_subset(client, fake_frappe):
    fake_frappe.add("Customer", {"name": "CUST-1", "customer_name": "John", "territory": "India"})

    doc = await get_document(client, "Customer", "CUST-1", fields=["customer_name"])

    assert doc == {"customer_name": "John"}


async def test_get_document_not_found(client):
    with pytest.raises(FrappeApiError) as exc_info:
        await get_document(client, "Customer", "NOPE")

    assert exc_info.value.status_code == 404
    assert "Customer NOPE not found" in exc_info.value.message


async def test_delete_document(client, fake_frappe):
    fake_frappe.add("ToDo", {"name": "TD-1"})

    result = await delete_document(client, "ToDo", "TD-1")

    assert result["success"]
    assert ("ToDo", "TD-1") not in fake_frappe.docs


async def test_list_documents_formats_filters(client, fake_frappe):
    fake_frappe.add("ToDo", {"name": "TD-1", "status": "Open"})
    fake_frappe.add("ToDo", {"name": "TD-2", "status": "Closed"})

    rows = await list_documents(client, "ToDo", filters={"status": "Open"}, fields=["name"], limit=10)

    assert rows == [{"name": "TD-1"}]
    assert json.loads(fake_frappe.requests[-1].url.params["filters"]) == [["status", "=", "Open"]]


async def test_reconcile_sends_vouchers_as_json_string(client, fake_frappe):
    vouchers = [{"payment_doctype": "Payment Entry", "payment_name": "PE-0001", "amount": 150.0}]
    fake_frappe.method_results[RECONCILE_VOUCHERS_METHOD] = {"status": "Reconciled"}

    result = await reconcile_bank_transaction(client, "BT-0001", vouchers)

    assert result == {"status": "Reconciled"}
    body = json.loads(fake_frappe.requests[-1].content)
    assert body["bank_transaction_name"] == "BT-0001"
    assert isinstance(body["vouchers"], str)
    assert json.loads(body["vouchers"]) == vouchers


@pytest.mark.parametrize(
    "vouchers",
    [
        "not a list",
        [{"payment_doctype": "Payment Entry", "payment_name": "PE-1"}],
        [{"payment_doctype": "Payment Entry", "payment_name": "PE-1", "amount": "10"}],
        [{"payment_doctype": "", "payment_name": "PE-1", "amount": 10}],
    ],
)
async def test_reconcile_rejects_bad_vouchers(client, fake_frappe, vouchers):
    with pytest.raises(InvalidArgument):
        await reconcile_bank_transaction(client, "BT-0001", vouchers)

    assert fake_frappe.requests == []
