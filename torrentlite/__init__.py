"""Peer-to-peer file sharing over UDP with a central tracker."""

__version__ = "0.1.0"

__all__ = ["config", "utils", "messages", "tracker", "storage", "seeder", "node"]