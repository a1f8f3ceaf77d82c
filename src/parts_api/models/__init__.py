"""API-layer request and response models."""
