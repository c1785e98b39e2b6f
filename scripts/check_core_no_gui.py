"""Guard against GUI imports in core modules.

Run this script in CI or locally to ensure the pipeline modules stay usable
headless. Only ``grid_render.py`` may touch matplotlib drawing, and it must do
so through the Agg canvas rather than pyplot.
"""

from __future__ import annotations

from pathlib import Path
import sys


CORE_MODULES = [
    "src/binmap_viewer/aggregator.py",
    "src/binmap_viewer/binarization.py",
    "src/binmap_viewer/config.py",
    "src/binmap_viewer/jobs.py",
    "src/binmap_viewer/raster_cache.py",
    "src/binmap_viewer/rasterizer.py",
    "src/binmap_viewer/resample.py",
    "src/binmap_viewer/samples.py",
    "src/binmap_viewer/sources.py",
    "src/binmap_viewer/stale_result_guard.py",
    "src/binmap_viewer/virtual_grid.py",
    "src/binmap_viewer/grid_render.py",
]

FORBIDDEN = ("PyQt", "PySide", "QtCore", "QtWidgets", "matplotlib.pyplot", "tkinter")


def main() -> int:
    bad = []
    for rel in CORE_MODULES:
        path = Path(rel)
        if not path.exists():
            continue
        text = path.read_text(encoding="utf-8", errors="ignore")
        for token in FORBIDDEN:
            if token in text:
                bad.append(f"{rel} contains '{token}'")
                break
    if bad:
        sys.stderr.write("GUI import guard failed:\n")
        sys.stderr.write("\n".join(bad))
        sys.stderr.write("\n")
        return 2
    print("GUI import guard passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
