"""
schema:// resources.

    schema://{doctype}                      DocType schema
    schema://{doctype}/{fieldname}/options  Link / Select field options
    schema://modules                        module list
    schema://doctypes                       DocType list

Resources are read with the environment credentials (the default client).
"""

import json
import re
from urllib.parse import unquote

import httpx
from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_REQUEST, ErrorData, Resource, ResourceTemplate

from .client import get_frappe_client
from .config import Settings, get_settings
from .errors import FrappeMcpError
from .log import get_logger
from .schema import get_all_doctypes, get_all_modules, get_doctype_schema, get_field_options

logger = get_logger("resources")

MIME_TYPE = "application/json"

SCHEMA_URI_RE = re.compile(r"^schema://([^/]+)$")
OPTIONS_URI_RE = re.compile(r"^schema://([^/]+)/([^/]+)/options$")

RESOURCE_TEMPLATES = [
    ResourceTemplate(
        uriTemplate="schema://{doctype}",
        name="DocType Schema",
        mimeType=MIME_TYPE,
        description="Schema information for a DocType including field definitions and validations",
    ),
    ResourceTemplate(
        uriTemplate="schema://{doctype}/{fieldname}/options",
        name="Field Options",
        mimeType=MIME_TYPE,
        description="Available options for a Link or Select field",
    ),
]

RESOURCES = [
    Resource(
        uri="schema://modules",
        name="Module List",
        mimeType=MIME_TYPE,
        description="List of all modules in the system",
    ),
    Resource(
        uri="schema://doctypes",
        name="DocType List",
        mimeType=MIME_TYPE,
        description="List of all DocTypes in the system",
    ),
]


async def read_schema_resource(
    uri: str,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Resolve a schema:// URI to a JSON document.

    Raises:
        McpError: INVALID_REQUEST for unknown URIs, INTERNAL_ERROR when the
            Frappe API call fails
    """
    uri = str(uri)
    try:
        schema_match = SCHEMA_URI_RE.match(uri)
        options_match = OPTIONS_URI_RE.match(uri)
        if not schema_match and not options_match:
            raise McpError(ErrorData(code=INVALID_REQUEST, message=f"Unknown resource URI: {uri}"))

        client = get_frappe_client(None, settings or get_settings(), transport)
        if schema_match:
            target = unquote(schema_match.group(1))
            if target == "modules":
                data = await get_all_modules(client)
            elif target == "doctypes":
                data = await get_all_doctypes(client)
            else:
                data = await get_doctype_schema(client, target)
        else:
            doctype = unquote(options_match.group(1))
            fieldname = unquote(options_match.group(2))
            data = await get_field_options(client, doctype, fieldname)

        return json.dumps(data, indent=2, default=str)
    except McpError:
        raise
    except FrappeMcpError as e:
        logger.error("Error handling resource request for %s: %s", uri, e)
        raise McpError(ErrorData(code=INTERNAL_ERROR, message=e.message)) from e
