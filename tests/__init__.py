"""Tests for phase-orchestrator."""
