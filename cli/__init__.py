"""
Hive Chain RPC - Command Line Interface
"""

from network.rpc import __version__

__all__ = ["__version__"]
