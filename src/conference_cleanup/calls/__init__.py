"""
Call log collaborator.

NOTE: keep this __init__ lightweight; do not import ORM models here.
"""

__all__: list[str] = []
