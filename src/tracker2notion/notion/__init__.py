"""Notion side of the sync: API client, property mapping, reconciliation."""
