"""Gateway API routers."""
