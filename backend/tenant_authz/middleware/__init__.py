"""FastAPI dependencies for tenant and actor context and permission checks."""
