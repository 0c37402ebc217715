"""
Tool table and dispatcher.

Every tool call ends up as a CallToolResult: text blocks plus an isError
flag. Validation problems, missing credentials and remote failures are all
converted here; nothing raised by a tool escapes to the MCP session.
"""

import json
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from mcp.types import CallToolResult, TextContent, Tool

from . import __version__
from .auth import Credentials, resolve_credentials
from .client import FrappeClient, get_frappe_client
from .config import Settings, get_settings
from .documents import (
    call_method,
    check_document_exists,
    create_document,
    delete_document,
    get_document,
    get_document_count,
    list_documents,
    reconcile_bank_transaction,
    update_document,
)
from .errors import FrappeMcpError, MissingArgument, UnknownTool, suggest_fix
from .health import check_frappe_api_health
from .hints import (
    find_workflows_for_doctype,
    get_app_for_doctype,
    get_app_usage_instructions,
    get_doctype_hints,
    get_doctype_usage_instructions,
    get_workflow_hints,
)
from .log import get_logger
from .schema import (
    check_doctype_exists,
    find_doctypes,
    get_all_modules,
    get_doctype_schema,
    get_field_options,
    get_required_fields,
    summarize_schema,
)

logger = get_logger("tools")

# Errors that are the caller's fault; reported without a diagnostics block
VALIDATION_KINDS = frozenset({"unknown_tool", "missing_argument", "invalid_argument"})


# ──────────────────────────────────────────────────────────────
# Tool Schemas
# ──────────────────────────────────────────────────────────────
CREDENTIAL_PROPERTIES = {
    "api_key": {"type": "string", "description": "Frappe API key for authentication"},
    "api_secret": {"type": "string", "description": "Frappe API secret for authentication"},
    "frappe_url": {
        "type": "string",
        "description": "Frappe instance URL (optional, defaults to server configuration)",
    },
}

FIELDS_PROPERTY = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Fields to retrieve (optional). If not specified, all fields will be returned.",
}

FILTERS_PROPERTY = {
    "type": "object",
    "description": "Filters to apply. Use format: {field: value} for exact match, {field: ['operator', value]} "
    "for other operators (=, !=, >, <, >=, <=, like, in, not in)",
    "additionalProperties": True,
}


def _tool(name: str, description: str, properties: dict, required: list[str], credentials: bool = True) -> Tool:
    if credentials:
        properties = {**properties, **CREDENTIAL_PROPERTIES}
        required = [*required, "api_key", "api_secret"]
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return Tool(name=name, description=description, inputSchema=schema)


DOCUMENT_TOOLS = [
    _tool(
        "create_document",
        "Create a new document in Frappe",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "values": {
                "type": "object",
                "description": "Document field values. Required fields must be included. For Link fields, "
                "provide the exact document name. For Table fields, provide an array of row objects.",
                "additionalProperties": True,
            },
        },
        ["doctype", "values"],
    ),
    _tool(
        "get_document",
        "Retrieve a document from Frappe",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "name": {"type": "string", "description": "Document name (case-sensitive)"},
            "fields": FIELDS_PROPERTY,
        },
        ["doctype", "name"],
    ),
    _tool(
        "update_document",
        "Update an existing document in Frappe",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "name": {"type": "string", "description": "Document name (case-sensitive)"},
            "values": {
                "type": "object",
                "description": "Document field values to update. Only include fields that need to be updated. "
                "For Table fields, provide the entire table data including row IDs for existing rows.",
                "additionalProperties": True,
            },
        },
        ["doctype", "name", "values"],
    ),
    _tool(
        "delete_document",
        "Delete a document from Frappe",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "name": {"type": "string", "description": "Document name (case-sensitive)"},
        },
        ["doctype", "name"],
    ),
    _tool(
        "list_documents",
        "List documents from Frappe with filters",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "filters": FILTERS_PROPERTY,
            "fields": FIELDS_PROPERTY,
            "limit": {"type": "number", "description": "Maximum number of documents to return (default: 20)"},
            "order_by": {"type": "string", "description": "Field to order by (e.g., 'creation desc', 'name asc')"},
            "limit_start": {"type": "number", "description": "Starting index for pagination (default: 0)"},
        },
        ["doctype"],
    ),
    _tool(
        "reconcile_bank_transaction_with_vouchers",
        "Reconciles a Bank Transaction document with specified vouchers by calling a specific Frappe method.",
        {
            "bank_transaction_name": {
                "type": "string",
                "description": "The ID (name) of the Bank Transaction document to reconcile.",
            },
            "vouchers": {
                "type": "array",
                "description": "An array of voucher objects to reconcile against the bank transaction.",
                "items": {
                    "type": "object",
                    "properties": {
                        "payment_doctype": {
                            "type": "string",
                            "description": "The DocType of the payment voucher (e.g., Payment Entry, Journal Entry).",
                        },
                        "payment_name": {"type": "string", "description": "The ID (name) of the payment voucher document."},
                        "amount": {"type": "number", "description": "The amount from the voucher to reconcile."},
                    },
                    "required": ["payment_doctype", "payment_name", "amount"],
                },
            },
        },
        ["bank_transaction_name", "vouchers"],
    ),
]

SCHEMA_TOOLS = [
    _tool(
        "get_doctype_schema",
        "Get the complete schema for a DocType including field definitions, validations, and linked DocTypes. "
        "Use this to understand the structure of a DocType before creating or updating documents.",
        {"doctype": {"type": "string", "description": "DocType name"}},
        ["doctype"],
    ),
    _tool(
        "get_field_options",
        "Get available options for a Link or Select field. For Link fields, returns documents from the linked "
        "DocType. For Select fields, returns the predefined options.",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "fieldname": {"type": "string", "description": "Field name"},
            "filters": {
                "type": "object",
                "description": "Filters to apply to the linked DocType (optional, for Link fields only)",
                "additionalProperties": True,
            },
        },
        ["doctype", "fieldname"],
    ),
    _tool(
        "get_frappe_usage_info",
        "Get combined information about a DocType or workflow, including schema metadata and usage guidance "
        "from static hints.",
        {
            "doctype": {"type": "string", "description": "DocType name (optional if workflow is provided)"},
            "workflow": {"type": "string", "description": "Workflow name (optional if doctype is provided)"},
        },
        [],
    ),
    _tool(
        "get_required_fields",
        "Get the mandatory fields of a DocType",
        {"doctype": {"type": "string", "description": "DocType name"}},
        ["doctype"],
    ),
    _tool(
        "find_doctypes",
        "Find DocTypes by name, module or kind",
        {
            "search_term": {"type": "string", "description": "Part of the DocType name to search for"},
            "module": {"type": "string", "description": "Module to filter by (e.g. 'Accounts', 'Stock')"},
            "is_table": {"type": "boolean", "description": "Only child tables (true) or only non-tables (false)"},
            "is_single": {"type": "boolean", "description": "Only single DocTypes (true) or only non-singles (false)"},
            "is_custom": {"type": "boolean", "description": "Only custom DocTypes (true) or only standard ones (false)"},
            "limit": {"type": "number", "description": "Maximum number of results, 1-100 (default: 20)"},
        },
        [],
    ),
    _tool("get_module_list", "List all modules in the system", {}, []),
    _tool(
        "check_doctype_exists",
        "Check whether a DocType exists",
        {"doctype": {"type": "string", "description": "DocType name"}},
        ["doctype"],
    ),
]

HELPER_TOOLS = [
    _tool(
        "call_method",
        "Execute a whitelisted Frappe method",
        {
            "method": {"type": "string", "description": "Method name to call (whitelisted)"},
            "params": {
                "type": "object",
                "description": "Parameters to pass to the method (optional)",
                "additionalProperties": True,
            },
        },
        ["method"],
    ),
    _tool(
        "check_document_exists",
        "Check whether a document exists",
        {
            "doctype": {"type": "string", "description": "DocType name"},
            "name": {"type": "string", "description": "Document name (case-sensitive)"},
        },
        ["doctype", "name"],
    ),
    _tool(
        "get_document_count",
        "Count documents of a DocType matching filters",
        {"doctype": {"type": "string", "description": "DocType name"}, "filters": FILTERS_PROPERTY},
        ["doctype"],
    ),
    _tool("ping", "Check that the MCP server is running", {}, [], credentials=False),
    _tool(
        "check_api_health",
        "Check connectivity and token authentication against the Frappe API",
        dict(CREDENTIAL_PROPERTIES),
        [],
        credentials=False,
    ),
]

TOOLS = DOCUMENT_TOOLS + SCHEMA_TOOLS + HELPER_TOOLS


# ──────────────────────────────────────────────────────────────
# Response Envelope
# ──────────────────────────────────────────────────────────────
def _json(obj: Any) -> str:
    return json.dumps(obj, indent=2, default=str)


def text_result(*texts: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=t) for t in texts], isError=is_error)


def _stack_excerpt(error: BaseException) -> str:
    frames = traceback.format_tb(error.__traceback__)[-3:]
    return "".join(frames).strip()


def format_error_response(
    error: BaseException,
    operation: str,
    arguments: dict | None = None,
    settings: Settings | None = None,
) -> CallToolResult:
    """Turn an error into an error-flagged result with a Details block."""
    arguments = arguments or {}
    settings = settings or get_settings()

    if isinstance(error, FrappeMcpError):
        kind = error.kind
        details = error.to_dict()
    else:
        kind = "unexpected_error"
        details = {"kind": kind, "message": str(error)}

    if kind in VALIDATION_KINDS:
        return text_result(str(error), is_error=True)

    if kind in ("missing_credentials", "no_client_available"):
        message = (
            f"{error} Please provide API credentials in the request or set environment variables "
            "FRAPPE_API_KEY and FRAPPE_API_SECRET."
        )
    elif kind == "verification_failure":
        message = (
            "Error: Document creation reported success but verification failed. "
            f"The document may not have been created.\n\nDetails: {error.reason}"
        )
    elif isinstance(error, FrappeMcpError) and error.auth_error:
        message = f"Authentication error: {error}. Please check your API key and secret."
    else:
        message = f"Error in {operation}: {error}"

    details.update(
        {
            "operation": operation,
            "error_type": type(error).__name__,
            "api_key_available": bool(arguments.get("api_key") or settings.api_key),
            "api_secret_available": bool(arguments.get("api_secret") or settings.api_secret),
            "per_request_auth": bool(arguments.get("api_key") and arguments.get("api_secret")),
            "stack": _stack_excerpt(error),
        }
    )
    suggestion = suggest_fix(str(error))
    if suggestion:
        details["suggestion"] = suggestion

    return text_result(message, f"\nDetails: {_json(details)}", is_error=True)


# ──────────────────────────────────────────────────────────────
# Handler Registry
# ──────────────────────────────────────────────────────────────
Handler = Callable[..., Awaitable["str | CallToolResult"]]


@dataclass(frozen=True)
class ToolHandler:
    handler: Handler
    required: tuple[str, ...]
    needs_credentials: bool


_HANDLERS: dict[str, ToolHandler] = {}


def tool_handler(name: str, required: tuple[str, ...] = (), needs_credentials: bool = True):
    """Register an async handler(client, args, credentials, settings, transport) for a tool."""

    def decorator(func: Handler) -> Handler:
        _HANDLERS[name] = ToolHandler(func, required, needs_credentials)
        return func

    return decorator


def _operation_label(name: str, arguments: dict) -> str:
    keys = [
        arguments.get(k)
        for k in ("doctype", "name", "fieldname", "method", "bank_transaction_name", "workflow")
        if arguments.get(k)
    ]
    return f"{name}({', '.join(str(k) for k in keys)})"


def _absent(value: Any) -> bool:
    return value is None or value == ""


async def handle_tool_call(
    name: str,
    arguments: dict | None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CallToolResult:
    """
    Route a tool call to its handler.

    Args:
        name: Tool name
        arguments: Tool arguments, including api_key / api_secret / frappe_url
        settings: Environment defaults (process settings when omitted)
        transport: httpx transport override for the Frappe client
    """
    settings = settings or get_settings()
    arguments = arguments or {}

    entry = _HANDLERS.get(name)
    if entry is None:
        logger.warning("Unknown tool requested: %s", name)
        return format_error_response(UnknownTool(name), name, arguments, settings)

    operation = _operation_label(name, arguments)
    logger.info("Handling %s", operation)
    try:
        missing = [arg for arg in entry.required if _absent(arguments.get(arg))]
        if missing:
            raise MissingArgument(*missing)

        credentials = None
        client = None
        if entry.needs_credentials:
            credentials = resolve_credentials(
                arguments.get("api_key"),
                arguments.get("api_secret"),
                arguments.get("frappe_url"),
                settings,
            )
            client = get_frappe_client(credentials, settings, transport)

        result = await entry.handler(
            client=client, args=arguments, credentials=credentials, settings=settings, transport=transport
        )
    except FrappeMcpError as e:
        logger.warning("%s failed: %s", operation, e)
        return format_error_response(e, operation, arguments, settings)
    except Exception as e:
        logger.exception("Unexpected error in %s", operation)
        return format_error_response(e, operation, arguments, settings)

    if isinstance(result, CallToolResult):
        return result
    return text_result(result)


# ──────────────────────────────────────────────────────────────
# Document Tools
# ──────────────────────────────────────────────────────────────
@tool_handler("create_document", required=("doctype", "values"))
async def _create_document(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    result = await create_document(client, args["doctype"], args["values"])
    return (
        f"Document created successfully using {credentials.auth_method} authentication:\n\n{_json(result)}"
    )


@tool_handler("get_document", required=("doctype", "name"))
async def _get_document(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    document = await get_document(client, args["doctype"], args["name"], args.get("fields"))
    return f"Document retrieved using {credentials.auth_method} authentication:\n\n{_json(document)}"


@tool_handler("update_document", required=("doctype", "name", "values"))
async def _update_document(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    result = await update_document(client, args["doctype"], args["name"], args["values"])
    return f"Document updated successfully using {credentials.auth_method} authentication:\n\n{_json(result)}"


@tool_handler("delete_document", required=("doctype", "name"))
async def _delete_document(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    await delete_document(client, args["doctype"], args["name"])
    return _json(
        {
            "success": True,
            "message": f"Document {args['doctype']}/{args['name']} deleted successfully "
            f"using {credentials.auth_method} authentication",
        }
    )


@tool_handler("list_documents", required=("doctype",))
async def _list_documents(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    limit = args.get("limit")
    limit_start = args.get("limit_start")
    documents = await list_documents(
        client,
        args["doctype"],
        filters=args.get("filters"),
        fields=args.get("fields"),
        limit=limit,
        order_by=args.get("order_by"),
        limit_start=limit_start,
    )

    pagination = ""
    if limit:
        start = limit_start or 0
        end = start + len(documents)
        pagination = f"\n\nShowing items {start + 1}-{end}"
        if len(documents) == limit:
            pagination += f" (more items may be available, use limit_start={end} to see next page)"

    return (
        f"Documents retrieved using {credentials.auth_method} authentication:\n\n{_json(documents)}{pagination}"
    )


@tool_handler("reconcile_bank_transaction_with_vouchers", required=("bank_transaction_name", "vouchers"))
async def _reconcile(client: FrappeClient, args: dict, **_) -> str:
    name = args["bank_transaction_name"]
    result = await reconcile_bank_transaction(client, name, args["vouchers"])
    return f"Bank transaction '{name}' reconciled successfully with vouchers:\n\n{_json(result)}"


@tool_handler("check_document_exists", required=("doctype", "name"))
async def _check_document_exists(client: FrappeClient, args: dict, **_) -> str:
    exists = await check_document_exists(client, args["doctype"], args["name"])
    return _json({"doctype": args["doctype"], "name": args["name"], "exists": exists})


@tool_handler("get_document_count", required=("doctype",))
async def _get_document_count(client: FrappeClient, args: dict, **_) -> str:
    count = await get_document_count(client, args["doctype"], args.get("filters"))
    return _json({"doctype": args["doctype"], "count": count, "filters": args.get("filters") or {}})


@tool_handler("call_method", required=("method",))
async def _call_method(client: FrappeClient, args: dict, **_) -> str:
    result = await call_method(client, args["method"], args.get("params"))
    return _json(result)


# ──────────────────────────────────────────────────────────────
# Schema Tools
# ──────────────────────────────────────────────────────────────
@tool_handler("get_doctype_schema", required=("doctype",))
async def _get_doctype_schema(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    schema = await get_doctype_schema(client, args["doctype"])
    summary = {**summarize_schema(schema), "authMethod": credentials.auth_method}
    return (
        f"Schema Summary (retrieved using {credentials.auth_method} authentication):\n{_json(summary)}"
        f"\n\nFull Schema:\n{_json(schema)}"
    )


@tool_handler("get_field_options", required=("doctype", "fieldname"))
async def _get_field_options(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    doctype, fieldname = args["doctype"], args["fieldname"]
    options = await get_field_options(client, doctype, fieldname, args.get("filters"))
    return (
        f"Field options for {doctype}.{fieldname} (retrieved using {credentials.auth_method} "
        f"authentication):\n\n{_json(options)}"
    )


@tool_handler("get_frappe_usage_info")
async def _get_frappe_usage_info(client: FrappeClient, args: dict, credentials: Credentials, **_) -> str:
    doctype = args.get("doctype")
    workflow = args.get("workflow")
    if not doctype and not workflow:
        raise MissingArgument("doctype", "workflow", message="At least one of doctype or workflow must be provided")

    result: dict[str, Any] = {}
    if doctype:
        schema = await get_doctype_schema(client, doctype)
        result["schema"] = schema
        result["hints"] = get_doctype_hints(doctype)

        app = get_app_for_doctype(doctype, schema.get("module"))
        if app:
            result["appInstructions"] = get_app_usage_instructions(app)
        result["usageInstructions"] = get_doctype_usage_instructions(doctype)

        workflows = find_workflows_for_doctype(doctype)
        if workflows:
            result["workflows"] = workflows

    if workflow:
        result["workflowHints"] = get_workflow_hints(workflow)

    return (
        f"Frappe usage information (retrieved using {credentials.auth_method} authentication):\n\n{_json(result)}"
    )


@tool_handler("get_required_fields", required=("doctype",))
async def _get_required_fields(client: FrappeClient, args: dict, **_) -> str:
    fields = await get_required_fields(client, args["doctype"])
    return _json({"doctype": args["doctype"], "required_fields": fields})


@tool_handler("find_doctypes")
async def _find_doctypes(client: FrappeClient, args: dict, **_) -> str:
    doctypes = await find_doctypes(
        client,
        search_term=args.get("search_term") or "",
        module=args.get("module"),
        is_table=args.get("is_table"),
        is_single=args.get("is_single"),
        is_custom=args.get("is_custom"),
        limit=int(args.get("limit") or 20),
    )
    return _json({"count": len(doctypes), "doctypes": doctypes})


@tool_handler("get_module_list")
async def _get_module_list(client: FrappeClient, **_) -> str:
    modules = await get_all_modules(client)
    return _json({"count": len(modules), "modules": modules})


@tool_handler("check_doctype_exists", required=("doctype",))
async def _check_doctype_exists(client: FrappeClient, args: dict, **_) -> str:
    exists = await check_doctype_exists(client, args["doctype"])
    return _json({"doctype": args["doctype"], "exists": exists})


# ──────────────────────────────────────────────────────────────
# System Tools
# ──────────────────────────────────────────────────────────────
@tool_handler("ping", needs_credentials=False)
async def _ping(settings: Settings, **_) -> str:
    return _json(
        {
            "mcp_server": "ok",
            "server_time": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "frappe_url": settings.frappe_url,
        }
    )


@tool_handler("check_api_health", needs_credentials=False)
async def _check_api_health(args: dict, settings: Settings, transport, **_) -> CallToolResult:
    credentials = None
    if args.get("api_key") or args.get("api_secret"):
        credentials = Credentials(
            args.get("api_key") or "",
            args.get("api_secret") or "",
            args.get("frappe_url") or settings.frappe_url,
        )
    health = await check_frappe_api_health(credentials, settings, transport)
    return text_result(_json(health.to_dict()), is_error=not health.healthy)
