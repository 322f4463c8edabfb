"""FastAPI surface for the gateway."""
