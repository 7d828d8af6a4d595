"""Pydantic schemas for service inputs and results."""
