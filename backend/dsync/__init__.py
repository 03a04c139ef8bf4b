"""DSync backend: real-time message synchronisation for chat."""
