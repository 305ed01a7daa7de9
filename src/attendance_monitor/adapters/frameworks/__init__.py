"""Framework integrations (ASGI middleware, FastAPI routers)."""
