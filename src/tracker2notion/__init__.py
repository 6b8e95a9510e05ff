"""Keep schema-driven tracking records in sync with a Notion database."""

__version__ = "0.1.0"
