"""Agent loop nodes."""
