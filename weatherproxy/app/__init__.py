"""FastAPI application package for the weather proxy."""
