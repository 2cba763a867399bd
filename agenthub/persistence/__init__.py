"""Job and lead persistence adapters."""
