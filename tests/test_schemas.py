"""Tests for structured payload schemas."""

from phase_orchestrator.schemas import (
	PHASE_BREAKDOWN_SCHEMA,
	REVIEW_VERDICT_SCHEMA,
	extract_json,
)


def test_valid_review_verdict():
	valid, data, error = REVIEW_VERDICT_SCHEMA.validate('{"verdict": "APPROVED", "issues": []}')
	assert valid is True
	assert data["verdict"] == "APPROVED"
	assert error is None


def test_missing_required_key():
	valid, data, error = REVIEW_VERDICT_SCHEMA.validate('{"summary": "fine"}')
	assert valid is False
	assert "verdict" in error


def test_enum_violation():
	valid, _, error = REVIEW_VERDICT_SCHEMA.validate('{"verdict": "MAYBE"}')
	assert valid is False
	assert "must be one of" in error


def test_wrong_type():
	valid, _, error = PHASE_BREAKDOWN_SCHEMA.validate('{"phases": "one, two"}')
	assert valid is False
	assert "expected type 'array'" in error


def test_invalid_json():
	valid, data, error = PHASE_BREAKDOWN_SCHEMA.validate("not json")
	assert valid is False
	assert data is None
	assert error.startswith("Invalid JSON")


def test_non_object_json():
	valid, _, error = PHASE_BREAKDOWN_SCHEMA.validate("[1, 2]")
	assert valid is False
	assert error == "Expected a JSON object"


def test_extract_fenced_json():
	text = 'Result:\n```json\n{"verdict": "FAILED"}\n```'
	assert extract_json(text) == '{"verdict": "FAILED"}'
	assert extract_json('  {"a": 1}  ') == '{"a": 1}'
