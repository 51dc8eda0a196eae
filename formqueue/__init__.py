"""
Offline-first Form Queue

An in-memory job queue with bounded retries and result retention, plus the
client-side offline store and reconciliation protocol that delivers
submissions made while disconnected once connectivity returns.
"""

__version__ = "1.0.0"
