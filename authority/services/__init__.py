"""Application services (credential verification, token lifecycle)."""
