"""
taskstream: resilient push-update channel for task progress

Keeps client-side task state synchronized with server-side progress over a
single long-lived WebSocket connection.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
