"""Flask HTTP interface and status dashboard."""
