"""Command-line entry: ``python -m certprep`` or the ``certprep`` script."""

from __future__ import annotations

import sys
from pathlib import Path

try:
    from .app import run  # type: ignore[attr-defined]
    from .config import configure_logging  # type: ignore[attr-defined]
except ImportError:
    # Run as a file path (no parent package): import from the checkout instead.
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
    from certprep.app import run  # type: ignore[attr-defined]
    from certprep.config import configure_logging  # type: ignore[attr-defined]


def main() -> int:
    configure_logging()
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
