"""
Pydantic models for registry views and API payloads.
"""
