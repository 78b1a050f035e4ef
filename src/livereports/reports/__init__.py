"""Report data access — the hub's only outbound dependency."""
