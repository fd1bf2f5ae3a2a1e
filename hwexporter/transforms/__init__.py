"""
Batch transforms applied to GPU metrics before rendering.
"""

from .base import Transform, TransformError
from .kubernetes import PodInfo, PodMapper

__all__ = [
    "Transform",
    "TransformError",
    "PodInfo",
    "PodMapper",
]
