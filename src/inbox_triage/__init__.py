"""Capability orchestration for on-device email triage."""
