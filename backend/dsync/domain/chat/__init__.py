"""Chat domain: models, store, and the message synchronisation core."""
