"""Service layer wrapping the clinic REST API."""
