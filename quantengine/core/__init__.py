"""Shared data model, error types and response envelope for the analytics engine."""
