"""
Document operations.

Creation goes through a verify-then-retry loop: Frappe can answer a create
call with a generated name before the record is queryable, or with an
incomplete body, so a create only counts once the document has been read
back from the server.
"""

import asyncio
import itertools
import json
import logging
import reprlib
import secrets
import time
from dataclasses import asdict, dataclass
from typing import Any

from .client import FrappeClient, format_filters
from .errors import FrappeApiError, InvalidArgument, MissingArgument, VerificationFailure
from .log import get_logger

logger = get_logger("documents")
operation_logger = get_logger("operations")

MAX_CREATE_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0
VERIFY_SEARCH_LIMIT = 5
DESCRIPTION_FILTER_LENGTH = 20

RECONCILE_VOUCHERS_METHOD = (
    "erpnext.accounts.doctype.bank_reconciliation_tool.bank_reconciliation_tool.reconcile_vouchers"
)

_operation_counter = itertools.count(1)


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


# ──────────────────────────────────────────────────────────────
# Operation Log
# ──────────────────────────────────────────────────────────────
def new_operation_id(doctype: str) -> str:
    """Build an id for one create call; the counter and random suffix keep same-millisecond calls apart."""
    return f"create_{doctype}_{int(time.time() * 1000)}_{next(_operation_counter)}_{secrets.token_hex(3)}"


def log_operation(operation_id: str, stage: str, data: Any) -> None:
    """Record a start/success/failure/error event for a create operation."""
    try:
        payload = json.dumps(data, indent=2, default=str)
    except (TypeError, ValueError, RecursionError) as e:
        payload = f"{reprlib.repr(data)} (not JSON serializable: {e})"

    level = {"failure": logging.WARNING, "error": logging.ERROR}.get(stage, logging.INFO)
    operation_logger.log(level, "[Operation %s] %s: %s", operation_id, stage, payload)


# ──────────────────────────────────────────────────────────────
# Create Verification
# ──────────────────────────────────────────────────────────────
def _verification_filters(values: dict) -> list | None:
    if values.get("name"):
        return [["name", "=", values["name"]]]
    if values.get("title"):
        return [["title", "=", values["title"]]]
    if values.get("description"):
        return [["description", "like", f"%{str(values['description'])[:DESCRIPTION_FILTER_LENGTH]}%"]]
    return None


async def verify_document_creation(
    client: FrappeClient,
    doctype: str,
    values: dict,
    creation_response: dict | None,
) -> VerificationResult:
    """
    Confirm that a document reported as created exists on the server.

    Tries a direct fetch by the returned name first, then a filtered search
    on the submitted name, title or description.
    """
    expected = (creation_response or {}).get("name")
    if not expected:
        return VerificationResult(False, "Response does not contain a document name")

    try:
        try:
            document = await client.get_doc(doctype, expected)
            if document and document.get("name") == expected:
                return VerificationResult(True, "Document verified by direct fetch")
        except FrappeApiError as e:
            logger.warning("Error fetching %s/%s during verification: %s", doctype, expected, e)

        filters = _verification_filters(values)
        if not filters:
            return VerificationResult(
                False, "Could not verify document creation - no suitable filters available"
            )

        documents = await client.get_doc_list(
            doctype, fields=["name"], filters=filters, limit=VERIFY_SEARCH_LIMIT
        )
        if documents:
            if any(doc.get("name") == expected for doc in documents):
                return VerificationResult(True, "Document verified by filter search")
            # Found records, just not ours: likely a duplicate or a renamed document
            return VerificationResult(
                False,
                f"Found {len(documents)} documents matching filters, "
                f"but none match the expected name {expected}",
            )

        return VerificationResult(False, "No documents found matching the creation filters")
    except FrappeApiError as e:
        return VerificationResult(False, f"Error during verification: {e}")


async def create_document_with_retry(
    client: FrappeClient,
    doctype: str,
    values: dict,
    max_retries: int = MAX_CREATE_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
    operation_id: str | None = None,
) -> dict:
    """
    Create a document and verify it, retrying with exponential backoff.

    Waits base_delay * 2 ** (attempt - 1) seconds after each failed attempt.
    Raises the last create error or VerificationFailure once the attempts
    run out.
    """
    label = operation_id or doctype
    last_error: Exception | None = None

    for attempt in range(1, max_retries + 1):
        try:
            result = await client.create_doc(doctype, values)
        except FrappeApiError as e:
            last_error = e
            logger.warning("[%s] attempt %d: create failed: %s", label, attempt, e)
        else:
            verification = await verify_document_creation(client, doctype, values, result)
            if verification.success:
                logger.info("[%s] attempt %d: %s", label, attempt, verification.message)
                return {**result, "_verification": verification.to_dict()}

            last_error = VerificationFailure(
                doctype, verification.message, (result or {}).get("name")
            )
            logger.warning("[%s] attempt %d: %s", label, attempt, last_error)

        delay = base_delay * (2 ** (attempt - 1))
        logger.info("[%s] retrying in %ss", label, delay)
        await asyncio.sleep(delay)

    raise last_error or FrappeApiError(f"Failed to create document after {max_retries} attempts")


async def create_document_transactional(client: FrappeClient, doctype: str, values: dict) -> dict:
    operation_id = new_operation_id(doctype)
    log_operation(operation_id, "start", {"doctype": doctype, "values": values})
    try:
        result = await create_document_with_retry(client, doctype, values, operation_id=operation_id)
    except VerificationFailure as e:
        log_operation(operation_id, "failure", {"error": str(e), "verification": e.to_dict()})
        raise
    except Exception as e:
        log_operation(operation_id, "error", {"error": str(e)})
        raise

    log_operation(operation_id, "success", {"result": result, "verification": result["_verification"]})
    return result


# ──────────────────────────────────────────────────────────────
# Document CRUD
# ──────────────────────────────────────────────────────────────
async def get_document(
    client: FrappeClient, doctype: str, name: str, fields: list[str] | None = None
) -> dict:
    if not doctype:
        raise MissingArgument("doctype")
    if not name:
        raise MissingArgument("name")

    document = await client.get_doc(doctype, name)
    if not document:
        raise FrappeApiError(
            f"Invalid response format for document {doctype}/{name}",
            endpoint=f"/api/resource/{doctype}/{name}",
        )
    if fields:
        return {field: document[field] for field in fields if field in document}
    return document


async def create_document(client: FrappeClient, doctype: str, values: dict) -> dict:
    """Create a document; succeeds only once the document has been verified."""
    if not doctype:
        raise MissingArgument("doctype")
    if not values:
        raise MissingArgument("values", message="Document values are required")

    logger.debug("Creating %s with values: %s", doctype, json.dumps(values, default=str)[:500])
    return await create_document_transactional(client, doctype, values)


async def update_document(client: FrappeClient, doctype: str, name: str, values: dict) -> dict:
    if not doctype:
        raise MissingArgument("doctype")
    if not name:
        raise MissingArgument("name")
    if not values:
        raise MissingArgument("values", message="Document values are required")

    result = await client.update_doc(doctype, name, values)
    if not result:
        raise FrappeApiError(
            f"Invalid response format for updating {doctype}/{name}",
            endpoint=f"/api/resource/{doctype}/{name}",
        )
    return result


async def delete_document(client: FrappeClient, doctype: str, name: str) -> dict:
    if not doctype:
        raise MissingArgument("doctype")
    if not name:
        raise MissingArgument("name")

    await client.delete_doc(doctype, name)
    return {"success": True, "doctype": doctype, "name": name}


async def list_documents(
    client: FrappeClient,
    doctype: str,
    filters: dict | list | None = None,
    fields: list[str] | None = None,
    limit: int | None = None,
    order_by: str | None = None,
    limit_start: int | None = None,
) -> list[dict]:
    if not doctype:
        raise MissingArgument("doctype")

    return await client.get_doc_list(
        doctype,
        fields=fields,
        filters=format_filters(filters),
        order_by=order_by,
        limit=limit,
        limit_start=limit_start,
    )


async def check_document_exists(client: FrappeClient, doctype: str, name: str) -> bool:
    if not doctype:
        raise MissingArgument("doctype")
    if not name:
        raise MissingArgument("name")

    try:
        document = await client.get_doc(doctype, name)
    except FrappeApiError as e:
        if e.status_code == 404:
            return False
        raise
    return bool(document)


async def get_document_count(client: FrappeClient, doctype: str, filters: dict | list | None = None) -> int:
    if not doctype:
        raise MissingArgument("doctype")
    return await client.get_count(doctype, format_filters(filters))


# ──────────────────────────────────────────────────────────────
# Method Calls
# ──────────────────────────────────────────────────────────────
async def call_method(client: FrappeClient, method: str, params: dict | None = None) -> Any:
    if not method:
        raise MissingArgument("method")
    return await client.call(method, params or {})


def _valid_voucher(voucher: Any) -> bool:
    if not isinstance(voucher, dict):
        return False
    amount = voucher.get("amount")
    return (
        isinstance(voucher.get("payment_doctype"), str)
        and bool(voucher["payment_doctype"])
        and isinstance(voucher.get("payment_name"), str)
        and bool(voucher["payment_name"])
        and isinstance(amount, (int, float))
        and not isinstance(amount, bool)
    )


async def reconcile_bank_transaction(
    client: FrappeClient, bank_transaction_name: str, vouchers: list[dict]
) -> Any:
    """
    Reconcile a Bank Transaction against payment vouchers.

    Args:
        bank_transaction_name: Name of the Bank Transaction document
        vouchers: List of {payment_doctype, payment_name, amount} dicts
    """
    if not bank_transaction_name or vouchers is None:
        raise MissingArgument("bank_transaction_name", "vouchers")
    if not isinstance(vouchers, list) or not all(_valid_voucher(v) for v in vouchers):
        raise InvalidArgument(
            "vouchers",
            "Invalid format for 'vouchers' parameter. It must be an array of objects, each with "
            "'payment_doctype' (string), 'payment_name' (string), and 'amount' (number).",
        )

    # reconcile_vouchers takes the voucher list as a JSON string
    params = {
        "bank_transaction_name": bank_transaction_name,
        "vouchers": json.dumps(vouchers),
    }
    logger.info("Calling %s for %s", RECONCILE_VOUCHERS_METHOD, bank_transaction_name)
    return await client.call(RECONCILE_VOUCHERS_METHOD, params)
