"""
API Routes Module.

Contains route handlers with kebab-case naming:
- recordings: Per-session recording control (/recordings/*)
- auto_recorder: Continuous recording mode (/auto-recorder/*)
"""

from .recordings import router as recordings_router
from .auto_recorder import router as auto_recorder_router

__all__ = [
    "recordings_router",
    "auto_recorder_router",
]
