"""Workflow services: step ledger, document registry, annotation log, coordinator."""
