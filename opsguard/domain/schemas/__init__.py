"""Domain schemas. Request/response and validation."""
