"""Domain models and services for the spare-parts desk."""
