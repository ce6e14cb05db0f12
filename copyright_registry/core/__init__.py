"""
Core registry state machine, error taxonomy, persistence and utilities.
"""
