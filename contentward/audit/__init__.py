"""Audit records and structured audit logging."""
