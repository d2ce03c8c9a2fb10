"""Shared FastAPI dependencies for the tools API."""
from functools import lru_cache
from typing import Optional

from rbus_dissector.engine.dissector import RBusDissector


@lru_cache(maxsize=1)
def get_dissector() -> RBusDissector:
    return RBusDissector()


def dissector_for(depth_limit: Optional[int] = None, object_limit: Optional[int] = None) -> RBusDissector:
    """Shared dissector, or a dedicated one when limits are overridden."""
    if depth_limit is None and object_limit is None:
        return get_dissector()
    return RBusDissector(depth_limit=depth_limit, object_limit=object_limit)
