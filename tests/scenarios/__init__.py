"""Scenario tests for compose-e2e.

These tests run the built-in scenarios against a real container engine and
the fixture projects (sentences, build-test, volume-test). They are skipped
unless docker answers and COMPOSE_E2E_FIXTURES_DIR (or tests/fixtures)
holds the fixture projects.
"""
