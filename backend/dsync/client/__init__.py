"""Reconciliation client model: local timeline, cache, REST and live channel clients."""
