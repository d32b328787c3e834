"""
Version helpers for proxy-upgrade.

We keep a static __version__ (PEP 440) and expose the user agent string sent
with every JSON-RPC request.
"""

from __future__ import annotations

# Bump this when publishing
__version__ = "0.2.0"


def user_agent() -> str:
    return f"proxy-upgrade/{__version__}"


__all__ = ["__version__", "user_agent"]
