"""Client helpers for talking to a DropVault API server."""
