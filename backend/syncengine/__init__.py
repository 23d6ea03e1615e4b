"""Sync coordination engine: pulls payments, invoices and contacts into a central store."""
