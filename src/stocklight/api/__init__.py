"""FastAPI application for Stocklight."""
