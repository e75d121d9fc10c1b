"""HTTP API package (FastAPI) for the DropVault runtime."""
