"""Pydantic models for configuration and domain records."""
