"""API routers for the progression engine."""
