"""Pydantic schemas for API validation, queue messages and JSON columns."""
