"""HTTP routers of the relay API."""
