"""Client and token authentication."""
