# authgate/utils/__init__.py

"""
Utility module initialization file.

Exposes the UTC clock helpers shared by the token codec, the stores and the
authorization server.
"""

from .clock import Clock, utc_now

__all__ = ["Clock", "utc_now"]
