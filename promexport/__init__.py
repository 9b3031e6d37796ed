"""Prometheus sample export: shard queues, histogram conversion, leases and storage."""

__version__ = "0.7.1"

__all__ = ["shard", "lease", "distribution", "transform", "storage"]