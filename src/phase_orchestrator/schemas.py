"""
Structured payload schemas for capability results.

Capabilities are asked to answer with JSON matching these schemas. A
payload may wrap its JSON in a fenced code block; the block is extracted
before validation.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class ResponseSchema:
	"""A schema for structured output from a capability."""

	name: str
	description: str
	json_schema: dict[str, Any] = field(default_factory=dict)

	def validate(self, response_str: str) -> tuple[bool, Optional[dict[str, Any]], Optional[str]]:
		"""
		Parse and validate a response against this schema.

		Returns:
			Tuple of (is_valid, parsed_data, error_message)
		"""
		try:
			data = json.loads(extract_json(response_str))
		except json.JSONDecodeError as e:
			return False, None, f"Invalid JSON: {e}"

		if not isinstance(data, dict):
			return False, None, "Expected a JSON object"

		# Validate required top-level keys
		required = self.json_schema.get("required", [])
		properties = self.json_schema.get("properties", {})

		for key in required:
			if key not in data:
				return False, data, f"Missing required key: {key}"

		# Validate property types and enums (best-effort)
		for key, prop_schema in properties.items():
			if key not in data:
				continue
			expected_type = prop_schema.get("type")
			if expected_type and not _check_type(data[key], expected_type):
				return False, data, f"Key '{key}' expected type '{expected_type}', got '{type(data[key]).__name__}'"
			allowed = prop_schema.get("enum")
			if allowed and data[key] not in allowed:
				return False, data, f"Key '{key}' must be one of {allowed}, got {data[key]!r}"

		return True, data, None


def extract_json(text: str) -> str:
	"""Return the JSON body of a payload, unwrapping a fenced block if present."""
	match = _FENCED_JSON.search(text)
	if match:
		return match.group(1)
	return text.strip()


def _check_type(value: Any, expected: str) -> bool:
	"""Check if a value matches the expected JSON schema type."""
	type_map = {
		"string": str,
		"number": (int, float),
		"integer": int,
		"boolean": bool,
		"array": list,
		"object": dict,
	}
	expected_type = type_map.get(expected)
	if expected_type is None:
		return True  # Unknown type, skip validation
	return isinstance(value, expected_type)


# Predefined schemas

PHASE_BREAKDOWN_SCHEMA = ResponseSchema(
	name="phase_breakdown",
	description="Ordered phases a request is split into",
	json_schema={
		"type": "object",
		"required": ["phases"],
		"properties": {
			"phases": {
				"type": "array",
				"description": "Phases in execution order",
				"items": {
					"type": "object",
					"properties": {
						"title": {"type": "string"},
						"objective": {"type": "string"},
					},
				},
			},
			"summary": {"type": "string", "description": "One-paragraph plan synopsis"},
		},
	},
)

REVIEW_VERDICT_SCHEMA = ResponseSchema(
	name="review_verdict",
	description="Verdict on an implemented phase",
	json_schema={
		"type": "object",
		"required": ["verdict"],
		"properties": {
			"verdict": {"type": "string", "enum": ["APPROVED", "NEEDS_REVISION", "FAILED"]},
			"summary": {"type": "string", "description": "Overall review summary"},
			"issues": {
				"type": "array",
				"description": "Issues that must be addressed",
				"items": {"type": "string"},
			},
		},
	},
)
