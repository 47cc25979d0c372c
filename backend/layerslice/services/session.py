"""
Slicing session: the single owner of the current layer store.

A session holds the meshes on the plate and the slot with the most
recently completed ``LayerStore``.  Every settings change submits a new
build.  Builds run on a one-thread coordinator so at most one build is
scheduling layer tasks at a time; submitting a new build sets the
cancel event of the running one, whose remaining layer tasks are then
dropped and whose result is discarded.

The slot is swapped under a lock, and only by the build that is still
the latest one when it finishes.  Readers therefore always see either
the previous complete store or the new complete store, never a mix.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Sequence, Tuple

from .diagnostics import BuildCancelled
from .layers import LayerStore
from .mesh import Bounds, Mesh, union_bounds
from .pipeline import Intersector, LayerPipeline, build_fingerprint
from .settings import SlicingSettings
from .slicing import intersect_meshes_with_plane
from .store_cache import get_store_from_cache, put_store_in_cache

logger = logging.getLogger(__name__)


class SlicingSession:
    """Coordinate builds for one set of meshes.

    Args:
        meshes: Meshes to slice.
        bounds: Fixed build bounds; defaults to the meshes' union.
        intersector: Plane intersector handed to every pipeline.
        max_workers: Layer worker pool size for every build.
        use_cache: Reuse stores from the shared store cache.  Ignored
            (treated as ``False``) with a custom intersector, whose
            output the fingerprint does not describe.
    """

    def __init__(
        self,
        meshes: Sequence[Mesh] = (),
        bounds: Optional[Bounds] = None,
        intersector: Intersector = intersect_meshes_with_plane,
        max_workers: Optional[int] = None,
        use_cache: bool = True,
    ) -> None:
        self._meshes: Tuple[Mesh, ...] = tuple(meshes)
        self._bounds = bounds
        self.intersector = intersector
        self.max_workers = max_workers
        self.use_cache = use_cache and intersector is intersect_meshes_with_plane
        self._lock = threading.Lock()
        self._store: Optional[LayerStore] = None
        self._settings: Optional[SlicingSettings] = None
        self._generation = 0
        self._cancel: Optional[threading.Event] = None
        self._closed = False
        self._coordinator = ThreadPoolExecutor(max_workers=1, thread_name_prefix="slice-coordinator")

    @property
    def store(self) -> Optional[LayerStore]:
        """The most recently completed store, or ``None`` before the first build."""
        with self._lock:
            return self._store

    @property
    def settings(self) -> Optional[SlicingSettings]:
        """Settings of the most recently submitted build."""
        with self._lock:
            return self._settings

    @property
    def meshes(self) -> Tuple[Mesh, ...]:
        with self._lock:
            return self._meshes

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def update_meshes(self, meshes: Sequence[Mesh], bounds: Optional[Bounds] = None) -> None:
        """Replace the geometry used by the next build.

        The current store stays in place until a new build finishes.
        """
        with self._lock:
            self._meshes = tuple(meshes)
            self._bounds = bounds

    def submit(self, settings: SlicingSettings) -> "Future[Optional[LayerStore]]":
        """Start a build for ``settings`` and cancel any build in flight.

        Returns:
            A future resolving to the new store, or to ``None`` when this
            build was itself superseded before it finished.

        Raises:
            ConfigError: If ``settings`` is invalid.  Nothing is
                scheduled and the running build is left alone.
            BuildCancelled: If the session has been closed.
        """
        settings.validate()
        with self._lock:
            if self._closed:
                raise BuildCancelled("session is closed")
            self._generation += 1
            generation = self._generation
            if self._cancel is not None:
                self._cancel.set()
            cancel_event = threading.Event()
            self._cancel = cancel_event
            self._settings = settings
            meshes = self._meshes
            bounds = self._bounds
            logger.info("submitting build %d", generation)
            return self._coordinator.submit(self._run, generation, settings, meshes, bounds, cancel_event)

    def rebuild(self, settings: SlicingSettings) -> Optional[LayerStore]:
        """Build synchronously and return the resulting store.

        Returns ``None`` if another submission superseded this one while
        it was running.
        """
        return self.submit(settings).result()

    def cancel(self) -> None:
        """Cancel the build in flight, if any."""
        with self._lock:
            self._generation += 1
            if self._cancel is not None:
                self._cancel.set()
                self._cancel = None

    def close(self) -> None:
        """Cancel the build in flight and stop the coordinator thread."""
        self.cancel()
        with self._lock:
            self._closed = True
        self._coordinator.shutdown(wait=True)

    def _run(
        self,
        generation: int,
        settings: SlicingSettings,
        meshes: Tuple[Mesh, ...],
        bounds: Optional[Bounds],
        cancel_event: threading.Event,
    ) -> Optional[LayerStore]:
        if cancel_event.is_set():
            logger.info("build %d superseded before start", generation)
            return None
        try:
            store = self._compute(settings, meshes, bounds, cancel_event)
        except BuildCancelled:
            logger.info("build %d cancelled", generation)
            return None
        with self._lock:
            if generation != self._generation:
                logger.info("discarding result of superseded build %d", generation)
                return None
            self._store = store
        logger.info(
            "build %d published: %d layers, status=%s",
            generation,
            len(store),
            store.status.value,
        )
        return store

    def _compute(
        self,
        settings: SlicingSettings,
        meshes: Tuple[Mesh, ...],
        bounds: Optional[Bounds],
        cancel_event: threading.Event,
    ) -> LayerStore:
        if bounds is None:
            bounds = union_bounds(meshes)
        if self.use_cache:
            cached = get_store_from_cache(build_fingerprint(meshes, settings, bounds))
            if cached is not None:
                logger.info("reusing cached store %s", cached.fingerprint[:12])
                return cached
        pipeline = LayerPipeline(settings, intersector=self.intersector)
        store = pipeline.build(meshes, bounds=bounds, max_workers=self.max_workers, cancel_event=cancel_event)
        if self.use_cache:
            put_store_in_cache(store)
        return store
