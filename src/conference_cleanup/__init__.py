"""
Conference cleanup service.

Tracks live telephony conferences, terminates orphaned or stale ones and
enforces a maximum conference duration.
"""

__version__ = "0.1.0"
