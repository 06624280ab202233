"""Chat gateway runners.

This module provides the service that wires gateway nodes onto a message broker
and runs them.
"""

from chatkit.runners.service import NodesService

__all__ = ["NodesService"]
