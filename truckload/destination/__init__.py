"""
Destination platform package.
"""

from truckload.destination.mux import DestinationConfig, MuxDestination

__all__ = ["DestinationConfig", "MuxDestination"]
