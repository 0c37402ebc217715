# -*- coding: utf-8 -*-
"""
Frappe MCP - Hint Loader

Loads and indexes static hint definitions from JSON/YAML files.
"""

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..log import get_logger

logger = get_logger("hints")

HINT_TYPES = ("doctype", "workflow", "app")


class HintLoader:
	"""
	Loads and indexes static hint definitions.

	A definition file holds a list of entries, each tagged with a ``type``
	of doctype, workflow or app. The indexes are built once in __init__
	and only read afterwards.
	"""

	def __init__(self, definitions_dir: Optional[Path] = None):
		self.definitions_dir = Path(definitions_dir) if definitions_dir else Path(__file__).parent / "definitions"
		self._doctype_hints: Dict[str, List[Dict]] = {}
		self._workflows: Dict[str, Dict] = {}
		self._apps: Dict[str, Dict] = {}
		self._load_all_hints()

	def _load_all_hints(self):
		"""Load all hint definitions from the definitions directory."""
		if not self.definitions_dir.exists():
			logger.warning("Hint definitions directory not found: %s", self.definitions_dir)
			return

		for file_path in sorted(self.definitions_dir.iterdir()):
			if file_path.suffix not in (".json", ".yaml", ".yml"):
				continue
			try:
				entries = self._load_hint_file(file_path)
			except (OSError, ValueError, yaml.YAMLError) as e:
				logger.error("Failed to load hints %s: %s", file_path, e)
				continue

			for entry in entries:
				if not self.validate_hint(entry):
					logger.warning("Skipping invalid hint in %s: %r", file_path.name, entry)
					continue
				self._register(entry)

	def _load_hint_file(self, file_path: Path) -> List[Dict]:
		"""
		Load hint entries from a file.

		Args:
			file_path: Path to the hint file

		Returns:
			List of hint entries
		"""
		with open(file_path, "r", encoding="utf-8") as f:
			if file_path.suffix == ".json":
				data = json.load(f)
			else:
				data = yaml.safe_load(f)

		if data is None:
			return []
		if isinstance(data, dict):
			return [data]
		return list(data)

	def _register(self, entry: Dict):
		key = entry["target"].lower()
		if entry["type"] == "doctype":
			self._doctype_hints.setdefault(key, []).append(entry)
		elif entry["type"] == "workflow":
			self._workflows[key] = entry
		else:
			self._apps[key] = entry

	def validate_hint(self, hint: Dict) -> bool:
		"""
		Validate a hint entry.

		Args:
			hint: Hint entry to validate

		Returns:
			True if valid
		"""
		if not isinstance(hint, dict):
			return False
		if hint.get("type") not in HINT_TYPES or not isinstance(hint.get("target"), str):
			return False

		if hint["type"] == "doctype":
			return isinstance(hint.get("hint"), str)
		if hint["type"] == "workflow":
			return isinstance(hint.get("steps"), list)
		return isinstance(hint.get("doctypes", {}), dict) and isinstance(hint.get("modules", []), list)

	# Lookups

	def get_doctype_hints(self, doctype: str) -> List[Dict]:
		return list(self._doctype_hints.get(doctype.lower(), []))

	def get_workflow_hints(self, workflow: str) -> Optional[Dict]:
		return self._workflows.get(workflow.lower())

	def find_workflows_for_doctype(self, doctype: str) -> List[Dict]:
		"""
		Find workflows that involve a DocType.

		Returns:
			List of {name, description} dicts
		"""
		doctype = doctype.lower()
		return [
			{"name": wf["target"], "description": wf.get("description", "")}
			for wf in self._workflows.values()
			if doctype in (d.lower() for d in wf.get("related_doctypes", []))
		]

	def get_app_for_doctype(self, doctype: str, module: Optional[str] = None) -> Optional[str]:
		"""
		Find the app a DocType belongs to.

		Args:
			doctype: DocType name
			module: The DocType's module, when already known from its schema

		Returns:
			App name or None
		"""
		doctype = doctype.lower()
		for app in self._apps.values():
			if doctype in (d.lower() for d in app.get("doctypes", {})):
				return app["target"]

		if module:
			module = module.lower()
			for app in self._apps.values():
				if module in (m.lower() for m in app.get("modules", [])):
					return app["target"]
		return None

	def get_app_usage_instructions(self, app: str) -> Optional[Dict]:
		entry = self._apps.get(app.lower())
		if entry is None:
			return None
		return {
			"app": entry["target"],
			"description": entry.get("description", ""),
			"instructions": entry.get("instructions", ""),
		}

	def get_doctype_usage_instructions(self, doctype: str) -> Optional[Dict]:
		for app in self._apps.values():
			for name, instructions in app.get("doctypes", {}).items():
				if name.lower() == doctype.lower():
					return {"app": app["target"], "doctype": name, "instructions": instructions}
		return None

	def stats(self) -> Dict[str, int]:
		return {
			"doctype_hints": sum(len(h) for h in self._doctype_hints.values()),
			"workflows": len(self._workflows),
			"apps": len(self._apps),
		}


# Global hint loader instance
_hint_loader: Optional[HintLoader] = None
_hint_loader_lock = threading.Lock()


def get_hint_loader() -> HintLoader:
	"""
	Get the global hint loader instance, building it on first use.

	Returns:
		HintLoader instance
	"""
	global _hint_loader
	if _hint_loader is None:
		with _hint_loader_lock:
			if _hint_loader is None:
				_hint_loader = HintLoader()
	return _hint_loader


def initialize_static_hints() -> HintLoader:
	loader = get_hint_loader()
	logger.info("Static hints initialized: %s", loader.stats())
	return loader


def get_doctype_hints(doctype: str) -> List[Dict]:
	return get_hint_loader().get_doctype_hints(doctype)


def get_workflow_hints(workflow: str) -> Optional[Dict]:
	return get_hint_loader().get_workflow_hints(workflow)


def find_workflows_for_doctype(doctype: str) -> List[Dict]:
	return get_hint_loader().find_workflows_for_doctype(doctype)


def get_app_for_doctype(doctype: str, module: Optional[str] = None) -> Optional[str]:
	return get_hint_loader().get_app_for_doctype(doctype, module)


def get_app_usage_instructions(app: str) -> Optional[Dict]:
	return get_hint_loader().get_app_usage_instructions(app)


def get_doctype_usage_instructions(doctype: str) -> Optional[Dict]:
	return get_hint_loader().get_doctype_usage_instructions(doctype)
