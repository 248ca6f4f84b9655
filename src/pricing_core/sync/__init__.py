"""Sync subpackage - price list reconciliation, delta imports and job scheduling."""
