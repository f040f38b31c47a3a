# soilroot/geometry.py
from __future__ import annotations

import numpy as np
import logging
from typing import List, Sequence, Tuple

from soilroot import utils, constants

logger = logging.getLogger(__name__)

# --- Minimal geometry kit ---
# Points and vectors are float numpy arrays of shape (3,).
# Curves are explicit point sequences (Polyline).


def to_radian(deg: float) -> float:
    return float(deg) * constants.PI / 180.0


def to_degree(rad: float) -> float:
    return float(rad) * 180.0 / constants.PI


def rotate_vector(v: np.ndarray, angle_rad: float, axis: np.ndarray) -> np.ndarray:
    """Rotates v by angle_rad about axis (right hand rule, Rodrigues' formula)."""
    v = np.asarray(v, dtype=float)
    k = utils.normalize_vector(axis)
    if not np.any(k):
        return v.copy()
    cos_a = np.cos(angle_rad)
    sin_a = np.sin(angle_rad)
    return v * cos_a + np.cross(k, v) * sin_a + k * np.dot(k, v) * (1.0 - cos_a)


def signed_vec_angle(v0: np.ndarray, v1: np.ndarray, normal: np.ndarray) -> float:
    """
    Signed angle in degrees from v0 to v1, measured about normal.

    The dot product of the unitized vectors is shrunk by ANGLE_DOT_CLAMP before acos so
    parallel vectors never push acos out of its domain. Degenerate vectors give 0.
    """
    a = utils.normalize_vector(v0)
    b = utils.normalize_vector(v1)
    if not np.any(a) or not np.any(b):
        return 0.0
    dot = float(np.dot(a, b)) * constants.ANGLE_DOT_CLAMP
    angle = to_degree(np.arccos(np.clip(dot, -1.0, 1.0)))
    if np.dot(np.cross(a, b), normal) < 0:
        angle = -angle
    return angle


class Plane:
    """Origin plus two orthonormal in-plane axes and their normal."""

    def __init__(self, origin=(0.0, 0.0, 0.0), x_axis=(1.0, 0.0, 0.0), y_axis=(0.0, 1.0, 0.0)):
        self.origin: np.ndarray = utils.as_point(origin)
        x = utils.normalize_vector(utils.as_point(x_axis))
        y_raw = utils.as_point(y_axis)
        normal = utils.normalize_vector(np.cross(x, y_raw))
        if not np.any(x) or not np.any(normal):
            raise ValueError("Plane axes must be non-zero and non-parallel.")
        self.x_axis: np.ndarray = x
        self.normal: np.ndarray = normal
        self.y_axis: np.ndarray = np.cross(normal, x)

    @classmethod
    def world_xy(cls, origin=(0.0, 0.0, 0.0)) -> "Plane":
        return cls(origin, (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))

    @classmethod
    def world_xz(cls, origin=(0.0, 0.0, 0.0)) -> "Plane":
        # Vertical section plane: y axis of the plane is world +Z.
        return cls(origin, (1.0, 0.0, 0.0), (0.0, 0.0, 1.0))

    @classmethod
    def from_name(cls, name: str, origin=(0.0, 0.0, 0.0)) -> "Plane":
        name = (name or "xy").lower()
        if name == "xy":
            return cls.world_xy(origin)
        if name == "xz":
            return cls.world_xz(origin)
        raise ValueError(f"Unknown plane name '{name}'. Expected 'xy' or 'xz'.")

    def closest_parameter(self, p) -> Tuple[float, float]:
        d = utils.as_point(p) - self.origin
        return float(np.dot(d, self.x_axis)), float(np.dot(d, self.y_axis))

    def closest_parameters(self, points: np.ndarray) -> np.ndarray:
        """Vectorised closest_parameter for an (N, 3) array; returns (N, 2)."""
        d = np.asarray(points, dtype=float) - self.origin
        return np.column_stack((d @ self.x_axis, d @ self.y_axis))

    def point_at(self, u: float, v: float) -> np.ndarray:
        return self.origin + u * self.x_axis + v * self.y_axis

    def project_vector(self, v) -> np.ndarray:
        v = utils.as_point(v)
        return v - np.dot(v, self.normal) * self.normal

    def __repr__(self):
        return f"Plane(origin={self.origin.tolist()}, x={self.x_axis.tolist()}, y={self.y_axis.tolist()})"


class Polyline:
    """Piecewise-linear curve through an explicit point sequence."""

    def __init__(self, points: Sequence):
        pts = np.asarray(points, dtype=float)
        if pts.ndim != 2 or pts.shape[0] < 2:
            raise ValueError("A polyline needs at least two points.")
        if pts.shape[1] == 2:
            pts = np.column_stack((pts, np.zeros(pts.shape[0])))
        self.points: np.ndarray = pts
        seg = np.linalg.norm(np.diff(pts, axis=0), axis=1)
        self._cumulative: np.ndarray = np.concatenate(([0.0], np.cumsum(seg)))

    @classmethod
    def line(cls, start, end) -> "Polyline":
        return cls([utils.as_point(start), utils.as_point(end)])

    @property
    def length(self) -> float:
        return float(self._cumulative[-1])

    @property
    def start(self) -> np.ndarray:
        return self.points[0].copy()

    @property
    def end(self) -> np.ndarray:
        return self.points[-1].copy()

    def _locate(self, t: float) -> Tuple[int, float]:
        total = self.length
        if total <= 0:
            return 0, 0.0
        s = float(np.clip(t, 0.0, 1.0)) * total
        idx = int(np.searchsorted(self._cumulative, s, side="right") - 1)
        idx = min(max(idx, 0), len(self.points) - 2)
        seg_len = self._cumulative[idx + 1] - self._cumulative[idx]
        local = 0.0 if seg_len <= 0 else (s - self._cumulative[idx]) / seg_len
        return idx, local

    def point_at(self, t: float) -> np.ndarray:
        """Point at normalized arc-length parameter t in [0, 1]."""
        idx, local = self._locate(t)
        return self.points[idx] + local * (self.points[idx + 1] - self.points[idx])

    def tangent_at(self, t: float) -> np.ndarray:
        idx, _ = self._locate(t)
        return utils.normalize_vector(self.points[idx + 1] - self.points[idx])

    def divide_by_count(self, count: int, include_ends: bool = True) -> List[np.ndarray]:
        if count < 1:
            return []
        params = np.linspace(0.0, 1.0, count + 1)
        if not include_ends:
            params = params[1:-1]
        return [self.point_at(t) for t in params]

    def scaled(self, center, factor: float) -> "Polyline":
        c = utils.as_point(center)
        return Polyline(c + (self.points - c) * factor)

    def scaled_in_plane(self, center, factor: float, plane: Plane) -> "Polyline":
        """Scales only the in-plane components about center."""
        c = utils.as_point(center)
        d = self.points - c
        normal_part = np.outer(d @ plane.normal, plane.normal)
        return Polyline(c + (d - normal_part) * factor + normal_part)

    def __len__(self):
        return self.points.shape[0]

    def __repr__(self):
        return f"Polyline(n={len(self)}, length={self.length:.4f})"
