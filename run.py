"""
Entry point for the slicing service.

``python run.py`` starts the FastAPI server.  The application in
``backend/layerslice/main.py`` is imported after putting the
``backend`` directory on the Python path.  Set ``SLICE_DEBUG=1`` for
per-layer diagnostics.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import uvicorn

logging.basicConfig(
    level=logging.DEBUG if os.getenv("SLICE_DEBUG") else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> None:
    """Run the Uvicorn server hosting the slicing API."""
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    from layerslice.main import app  # type: ignore

    uvicorn.run(
        app,
        host=os.getenv("SLICE_HOST", "0.0.0.0"),
        port=int(os.getenv("SLICE_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
