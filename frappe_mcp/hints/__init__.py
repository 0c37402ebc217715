# -*- coding: utf-8 -*-
"""
Frappe MCP - Static Hints

Usage guidance for DocTypes, workflows and apps, loaded from the
definition files shipped with the package.
"""

from .loader import (
	HintLoader,
	find_workflows_for_doctype,
	get_app_for_doctype,
	get_app_usage_instructions,
	get_doctype_hints,
	get_doctype_usage_instructions,
	get_hint_loader,
	get_workflow_hints,
	initialize_static_hints,
)

__all__ = [
	"HintLoader",
	"find_workflows_for_doctype",
	"get_app_for_doctype",
	"get_app_usage_instructions",
	"get_doctype_hints",
	"get_doctype_usage_instructions",
	"get_hint_loader",
	"get_workflow_hints",
	"initialize_static_hints",
]
