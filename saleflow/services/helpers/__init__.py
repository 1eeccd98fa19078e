"""Shared helpers for the service layer."""
