"""HTTP API routers and wire models."""
