"""REST API for planpoker."""
