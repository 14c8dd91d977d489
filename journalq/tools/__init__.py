"""Per-tool adapters. Use ``journalq.tools.registry`` to look one up by tool type."""
