# soilroot/utils.py
import numpy as np
import random
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

_GLOBAL_RNG: np.random.Generator = np.random.default_rng()


def set_rng_seed(seed: int):
    """Sets the random seed for Python's random, NumPy, and the shared generator used by growth."""
    global _GLOBAL_RNG
    random.seed(seed)
    np.random.seed(seed)
    _GLOBAL_RNG = np.random.default_rng(seed)
    logger.info(f"Random Number Generator seed set to: {seed}")


def get_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Returns a generator for one growth instance.

    A non-negative seed gives an independent, reproducible generator. Otherwise the
    process-wide generator (see set_rng_seed) is shared.
    """
    if seed is not None and seed >= 0:
        return np.random.default_rng(seed)
    return _GLOBAL_RNG


def distance_squared(p1: np.ndarray, p2: np.ndarray) -> float:
    """Computes the squared Euclidean distance between two 3D points."""
    return float(np.sum((np.asarray(p1) - np.asarray(p2))**2))


def distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """Computes the Euclidean distance between two 3D points."""
    return float(np.sqrt(np.sum((np.asarray(p1) - np.asarray(p2))**2)))


def normalize_vector(v: np.ndarray) -> np.ndarray:
    """Normalizes a vector. Zero vectors are returned unchanged."""
    v = np.asarray(v, dtype=float)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


def as_point(p) -> np.ndarray:
    """Coerces 2- or 3-component input to a float (3,) array."""
    arr = np.asarray(p, dtype=float).reshape(-1)
    if arr.shape[0] == 2:
        arr = np.append(arr, 0.0)
    if arr.shape[0] != 3:
        raise ValueError(f"Expected a 2D or 3D point, got shape {np.shape(p)}")
    return arr


def create_output_directory(base_dir: str, sim_name: str = "root_sim", timestamp: bool = True) -> str:
    """
    Creates a unique output directory.
    Example: base_dir/YYYYMMDD_HHMMSS_sim_name or base_dir/sim_name
    """
    from datetime import datetime
    if timestamp:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        dir_name = f"{ts}_{sim_name}"
    else:
        dir_name = sim_name

    full_path = os.path.join(base_dir, dir_name)

    if os.path.exists(full_path):
        count = 1
        new_full_path = f"{full_path}_{count}"
        while os.path.exists(new_full_path):
            count += 1
            new_full_path = f"{full_path}_{count}"
        full_path = new_full_path
        logger.warning(f"Output directory {os.path.join(base_dir, dir_name)} existed. Using {full_path} instead.")

    os.makedirs(full_path, exist_ok=True)
    logger.info(f"Created output directory: {full_path}")
    return full_path
