"""Route package marker.

Keep this module import-light so service and worker code can import a single
route module without pulling in the whole HTTP surface.
"""

__all__ = [
    "connections",
    "facts",
    "health",
    "organizations",
    "people",
    "relationships",
    "resolution",
    "webhooks",
]
