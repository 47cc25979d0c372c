"""
In-memory cache of finished layer stores.

Slicing a model is expensive and a build is a pure function of its
inputs, so a store computed for a given fingerprint (meshes, settings
snapshot and bounds, see :func:`~.pipeline.build_fingerprint`) can be
handed out again verbatim when the same inputs come back, for example
when the user toggles a setting and then reverts it.

The cache is an ``OrderedDict`` with least-recently-used eviction.  Its
capacity defaults to ``MAX_CACHE_ENTRIES`` and can be set with the
``SLICE_CACHE_ENTRIES`` environment variable.

Usage::

    from .store_cache import get_store_from_cache, put_store_in_cache
    store = get_store_from_cache(fingerprint)
    if store is None:
        store = pipeline.build(meshes)
        put_store_in_cache(store)
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from threading import RLock
from typing import Optional

from .layers import LayerStore

logger = logging.getLogger(__name__)


def _capacity_from_env(default: int = 8) -> int:
    env = os.getenv("SLICE_CACHE_ENTRIES")
    if not env:
        return default
    try:
        return max(0, int(env))
    except ValueError:
        logger.warning("ignoring invalid SLICE_CACHE_ENTRIES=%r", env)
        return default


_cache: "OrderedDict[str, LayerStore]" = OrderedDict()
_lock = RLock()
MAX_CACHE_ENTRIES: int = _capacity_from_env()


def get_store_from_cache(fingerprint: str) -> Optional[LayerStore]:
    """Return the cached store for ``fingerprint``, if any."""
    with _lock:
        store = _cache.get(fingerprint)
        if store is not None:
            _cache.move_to_end(fingerprint)
        return store


def put_store_in_cache(store: LayerStore) -> None:
    """Cache ``store`` under its fingerprint.

    Only complete stores are kept; a partial store is recomputed next
    time in case the failure was caused by something transient in the
    caller's intersector.
    """
    if not store.is_ready or MAX_CACHE_ENTRIES <= 0:
        return
    with _lock:
        _cache[store.fingerprint] = store
        _cache.move_to_end(store.fingerprint)
        while len(_cache) > MAX_CACHE_ENTRIES:
            _cache.popitem(last=False)


def clear_store_cache() -> None:
    with _lock:
        _cache.clear()
