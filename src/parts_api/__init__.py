"""FastAPI application for the spare-parts desk."""
