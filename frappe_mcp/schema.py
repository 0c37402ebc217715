"""
DocType schema introspection.
"""

from typing import Any

from .client import FrappeClient, format_filters
from .errors import FrappeMcpError, InvalidArgument, MissingArgument
from .log import get_logger

logger = get_logger("schema")

FIELD_OPTIONS_LIMIT = 100


def _normalize_field(field: dict) -> dict:
    return {
        "fieldname": field.get("fieldname"),
        "label": field.get("label"),
        "fieldtype": field.get("fieldtype"),
        "required": bool(field.get("reqd", 0)),
        "options": field.get("options"),
        "default": field.get("default"),
        "description": field.get("description"),
        "read_only": bool(field.get("read_only", 0)),
        "hidden": bool(field.get("hidden", 0)),
        "in_list_view": bool(field.get("in_list_view", 0)),
    }


async def get_doctype_schema(client: FrappeClient, doctype: str) -> dict:
    """
    Get the field schema for a DocType.

    Args:
        doctype: Name of the DocType (e.g. "Customer", "Sales Order")
    """
    if not doctype:
        raise MissingArgument("doctype")

    doc = await client.get_doc("DocType", doctype)
    return {
        "name": doc.get("name", doctype),
        "module": doc.get("module"),
        "issingle": bool(doc.get("issingle", 0)),
        "istable": bool(doc.get("istable", 0)),
        "custom": bool(doc.get("custom", 0)),
        "autoname": doc.get("autoname"),
        "title_field": doc.get("title_field"),
        "fields": [_normalize_field(f) for f in doc.get("fields", []) if f.get("fieldname")],
        "permissions": doc.get("permissions", []),
    }


def summarize_schema(schema: dict) -> dict:
    field_types: dict[str, int] = {}
    for field in schema["fields"]:
        field_types[field["fieldtype"]] = field_types.get(field["fieldtype"], 0) + 1

    return {
        "name": schema["name"],
        "module": schema["module"],
        "isSingle": schema["issingle"],
        "isTable": schema["istable"],
        "isCustom": schema["custom"],
        "autoname": schema["autoname"],
        "fieldCount": len(schema["fields"]),
        "fieldTypes": field_types,
        "requiredFields": [f["fieldname"] for f in schema["fields"] if f["required"]],
        "permissions": len(schema["permissions"]),
    }


async def get_required_fields(client: FrappeClient, doctype: str) -> list[dict]:
    schema = await get_doctype_schema(client, doctype)
    return [
        {"fieldname": f["fieldname"], "label": f["label"], "fieldtype": f["fieldtype"], "options": f["options"]}
        for f in schema["fields"]
        if f["required"]
    ]


async def get_field_options(
    client: FrappeClient,
    doctype: str,
    fieldname: str,
    filters: dict | list | None = None,
) -> list[dict]:
    """
    Get the allowed values of a Link or Select field.

    Link fields return documents of the linked DocType (labelled by its
    title field when it has one); Select fields return their options.
    """
    if not doctype or not fieldname:
        raise MissingArgument("doctype", "fieldname")

    schema = await get_doctype_schema(client, doctype)
    field = next((f for f in schema["fields"] if f["fieldname"] == fieldname), None)
    if field is None:
        raise InvalidArgument("fieldname", f"Field {fieldname} not found in DocType {doctype}")

    if field["fieldtype"] == "Select":
        options = [o.strip() for o in (field["options"] or "").split("\n") if o.strip()]
        return [{"value": o, "label": o} for o in options]

    if field["fieldtype"] == "Link":
        linked = field["options"]
        if not linked:
            raise InvalidArgument("fieldname", f"Link field {fieldname} has no target DocType")

        title_field = None
        try:
            title_field = (await get_doctype_schema(client, linked)).get("title_field")
        except FrappeMcpError as e:
            logger.warning("Could not load title field for %s: %s", linked, e)

        fields = ["name", title_field] if title_field and title_field != "name" else ["name"]
        rows = await client.get_doc_list(
            linked, fields=fields, filters=format_filters(filters), limit=FIELD_OPTIONS_LIMIT
        )
        return [
            {"value": row["name"], "label": row.get(title_field) or row["name"]} for row in rows
        ]

    raise InvalidArgument(
        "fieldname",
        f"Field {fieldname} is of type {field['fieldtype']}, not Link or Select",
    )


# ──────────────────────────────────────────────────────────────
# DocType / Module Listings
# ──────────────────────────────────────────────────────────────
async def get_all_doctypes(client: FrappeClient) -> list[str]:
    rows = await client.get_doc_list("DocType", fields=["name"], order_by="name asc", limit=0)
    return [row["name"] for row in rows]


async def get_all_modules(client: FrappeClient) -> list[str]:
    rows = await client.get_doc_list("Module Def", fields=["name"], order_by="name asc", limit=0)
    return [row["name"] for row in rows]


async def find_doctypes(
    client: FrappeClient,
    search_term: str = "",
    module: str | None = None,
    is_table: bool | None = None,
    is_single: bool | None = None,
    is_custom: bool | None = None,
    limit: int = 20,
) -> list[dict]:
    filters: list[list[Any]] = []
    if search_term:
        filters.append(["name", "like", f"%{search_term}%"])
    if module:
        filters.append(["module", "=", module])
    if is_table is not None:
        filters.append(["istable", "=", int(is_table)])
    if is_single is not None:
        filters.append(["issingle", "=", int(is_single)])
    if is_custom is not None:
        filters.append(["custom", "=", int(is_custom)])

    return await client.get_doc_list(
        "DocType",
        fields=["name", "module", "istable", "issingle", "custom"],
        filters=filters or None,
        order_by="name asc",
        limit=max(1, min(100, limit)),
    )


async def check_doctype_exists(client: FrappeClient, doctype: str) -> bool:
    if not doctype:
        raise MissingArgument("doctype")
    rows = await client.get_doc_list("DocType", fields=["name"], filters=[["name", "=", doctype]], limit=1)
    return bool(rows)
