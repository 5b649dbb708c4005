"""Candidate positions for spatial search motions.

Candidates are grid points inside a sphere or an axis-aligned box centred
on a nominal position, ordered nearest-first so the nominal point itself is
always tried first. Ties are broken by grid order, which keeps generation
deterministic.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from stepwise.control.geometry import Vector3, as_vector3
from stepwise.errors import ConfigError

logger = logging.getLogger(__name__)

# Refuse absurd grids (e.g. a 1 m sphere at 1 mm resolution).
MAX_CANDIDATES = 100_000


class SpatialShape(str, Enum):
    SPHERE = "SPHERE"
    BOX = "BOX"


def _axis(half_extent: float, resolution: float) -> np.ndarray:
    """Symmetric grid offsets in [-half_extent, half_extent] including zero."""
    steps = int(np.floor(half_extent / resolution + 1e-9))
    return np.arange(-steps, steps + 1, dtype=np.float64) * resolution


def generate_candidates(
    center: Vector3,
    shape: SpatialShape | str,
    resolution: float,
    *,
    radius: float = 0.0,
    lengths: Vector3 | None = None,
) -> list[Vector3]:
    """Generate ordered candidate positions around *center*.

    Args:
        center: Nominal position.
        shape: ``SPHERE`` (filled ball of ``radius``) or ``BOX`` (``lengths``
            are full edge lengths along x, y, z).
        resolution: Grid spacing.
        radius: Sphere radius.
        lengths: Box edge lengths.

    Returns:
        Candidate positions, nearest to *center* first.

    Raises:
        ConfigError: On an unknown shape, bad resolution or oversized grid.
    """
    try:
        shape = SpatialShape(shape)
    except ValueError as e:
        raise ConfigError(f"Unknown spatial shape: {shape}") from e
    if resolution <= 0:
        raise ConfigError(f"Point resolution must be positive, got {resolution}")

    if shape is SpatialShape.SPHERE:
        half = (radius, radius, radius)
    else:
        if lengths is None:
            raise ConfigError("BOX search shape requires lengths")
        half = tuple(length / 2.0 for length in lengths)

    axes = [_axis(h, resolution) for h in half]
    count = int(np.prod([len(a) for a in axes]))
    if count > MAX_CANDIDATES:
        raise ConfigError(f"Search grid has {count} points (limit {MAX_CANDIDATES})")

    grid = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1).reshape(-1, 3)
    dist = np.linalg.norm(grid, axis=1)
    if shape is SpatialShape.SPHERE:
        keep = dist <= radius + 1e-9
        grid, dist = grid[keep], dist[keep]

    order = np.argsort(dist, kind="stable")
    offsets = grid[order] + np.asarray(center, dtype=np.float64)
    logger.debug("Generated %d %s candidates around %s", len(offsets), shape.value, center)
    return [as_vector3(p) for p in offsets]
