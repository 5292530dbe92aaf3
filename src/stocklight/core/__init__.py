"""Domain models, stock health engine and inventory service."""
