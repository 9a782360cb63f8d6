"""REST API for operator tooling."""
