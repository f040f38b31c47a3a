# soilroot/soil_index.py
from __future__ import annotations

import numpy as np
import logging
from scipy.spatial import KDTree
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from soilroot import utils, constants
from soilroot.geometry import Plane, Polyline, signed_vec_angle

logger = logging.getLogger(__name__)

GridKey = Tuple[int, int, int]

# --- Spatial index conventions ---
# Points are deduplicated on an integer grid key (coordinates * KEY_SCALE, rounded).
# After build the point array is stored in lexicographic key order, so the array
# index doubles as the tie-break rank for equidistant neighbours.


def make_key(p) -> GridKey:
    q = np.rint(utils.as_point(p) * constants.KEY_SCALE).astype(np.int64)
    return int(q[0]), int(q[1]), int(q[2])


def _as_point_array(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.empty((0, 3))
    arr = arr.reshape(-1, arr.shape[-1])
    if arr.shape[1] == 2:
        arr = np.column_stack((arr, np.zeros(arr.shape[0])))
    if arr.shape[1] != 3:
        raise ValueError(f"Soil points must have 2 or 3 coordinates, got shape {arr.shape}")
    return arr


class SpatialSoilIndex:
    """
    k-d tree over deduplicated soil sample points.

    Built once per growth session and read-only afterwards; the legacy topology map is
    the only structure filled in after build (see build_topology). Growth instances keep
    their own mutable side maps, so one index can be shared by several of them.
    """

    def __init__(self, plane: Optional[Plane] = None, seed: Optional[int] = None):
        self.plane: Plane = plane if plane is not None else Plane.world_xy()
        self._rng: np.random.Generator = utils.get_rng(seed)
        self.points: np.ndarray = np.empty((0, 3))
        self.keys: List[GridKey] = []
        self._key_to_index: Dict[GridKey, int] = {}
        self._tree: Optional[KDTree] = None
        self.unit_len: float = 0.0
        self.bound: Optional[Tuple[float, float, float, float]] = None
        self.topology: Dict[GridKey, List[Optional[Tuple[float, GridKey]]]] = {}

    # --- construction ---
    def build(self, points=None, polylines: Optional[Iterable] = None) -> "SpatialSoilIndex":
        """
        Flattens polylines and points into one cloud, deduplicates on grid key (first
        occurrence wins), builds the tree, the unit spacing and the boundary descriptor.
        """
        chunks = []
        if polylines is not None:
            for pl in polylines:
                chunks.append(_as_point_array(pl.points if isinstance(pl, Polyline) else pl))
        if points is not None:
            chunks.append(_as_point_array(points))
        cloud = np.concatenate(chunks) if chunks else np.empty((0, 3))

        if cloud.shape[0] == 0:
            logger.warning("Soil index built from an empty point set.")
            self.points = np.empty((0, 3))
            self.keys = []
            self._key_to_index = {}
            self._tree = None
            self.unit_len = 0.0
            self.bound = None
            return self

        grid = np.rint(cloud * constants.KEY_SCALE).astype(np.int64)
        # np.unique sorts keys lexicographically and reports the first occurrence of each.
        unique_keys, first_idx = np.unique(grid, axis=0, return_index=True)
        self.points = cloud[first_idx]
        self.keys = [(int(k[0]), int(k[1]), int(k[2])) for k in unique_keys]
        self._key_to_index = {k: i for i, k in enumerate(self.keys)}
        self._tree = KDTree(self.points)

        dropped = cloud.shape[0] - self.points.shape[0]
        if dropped:
            logger.debug(f"Soil index dropped {dropped} duplicate points.")
        self.unit_len = self._compute_unit_len()
        self.build_bound()
        logger.info(f"Soil index built with {len(self)} points, unit_len={self.unit_len:.4f}")
        return self

    def _compute_unit_len(self) -> float:
        n_points = len(self)
        if n_points < 2:
            logger.warning("Fewer than two soil points; unit spacing set to 0.")
            return 0.0
        n_sample = int(np.rint(min(n_points * constants.UNIT_LEN_SAMPLE_FRACTION,
                                   constants.UNIT_LEN_SAMPLE_MAX)))
        n_sample = max(1, min(n_sample, n_points))
        sample_idx = self._rng.choice(n_points, size=n_sample, replace=False)
        # k=2 includes the point itself; the farther of the two is its nearest neighbour.
        dists, _ = self._tree.query(self.points[sample_idx], k=2)
        return float(np.mean(dists[:, 1]))

    def build_bound(self):
        if len(self) == 0:
            self.bound = None
            return
        uv = self.plane.closest_parameters(self.points)
        self.bound = (float(uv[:, 0].min()), float(uv[:, 0].max()),
                      float(uv[:, 1].min()), float(uv[:, 1].max()))

    # --- lookups ---
    def __len__(self):
        return self.points.shape[0]

    def __contains__(self, item) -> bool:
        is_key = isinstance(item, tuple) and all(isinstance(x, int) for x in item)
        key = item if is_key else make_key(item)
        return key in self._key_to_index

    def key_of(self, p) -> GridKey:
        return make_key(p)

    def point_of(self, key: GridKey) -> Optional[np.ndarray]:
        idx = self._key_to_index.get(key)
        if idx is None:
            return None
        return self.points[idx].copy()

    def _nearest_indices(self, p, k: int) -> List[int]:
        n_points = len(self)
        if n_points == 0 or k <= 0:
            return []
        k = min(int(k), n_points)
        p = utils.as_point(p)
        dists, idx = self._tree.query(p, k=k)
        dists = np.atleast_1d(dists)
        radius = float(dists[-1]) + 1e-9
        # Every point as close as the k-th result, so equidistant points compete on key order.
        candidates = np.asarray(self._tree.query_ball_point(p, radius), dtype=np.int64)
        if candidates.size < k:
            candidates = np.atleast_1d(idx).astype(np.int64)
        cand_d = np.round(np.linalg.norm(self.points[candidates] - p, axis=1), 9)
        order = np.lexsort((candidates, cand_d))
        return [int(i) for i in candidates[order][:k]]

    def nearest_points(self, p, k: int) -> List[np.ndarray]:
        return [self.points[i].copy() for i in self._nearest_indices(p, k)]

    def nearest_point(self, p) -> Optional[np.ndarray]:
        found = self._nearest_indices(p, 1)
        return self.points[found[0]].copy() if found else None

    def nearest_keys(self, p, k: int) -> List[GridKey]:
        return [self.keys[i] for i in self._nearest_indices(p, k)]

    def nearest_key(self, p) -> Optional[GridKey]:
        found = self._nearest_indices(p, 1)
        return self.keys[found[0]] if found else None

    def is_on_boundary(self, p) -> bool:
        if self.bound is None:
            return False
        u, v = self.plane.closest_parameter(p)
        u_min, u_max, v_min, v_max = self.bound
        tol = constants.BOUNDARY_TOLERANCE_SQ
        return ((u_min - u)**2 < tol or (u_max - u)**2 < tol or
                (v_min - v)**2 < tol or (v_max - v)**2 < tol)

    # --- legacy topology map (sectional stepping mode) ---
    def _sector_of(self, angle_deg: float) -> int:
        angle = angle_deg % 360.0
        tol = constants.TOPO_SECTOR_TOLERANCE_DEG
        for slot in range(constants.TOPO_SECTOR_COUNT):
            target = 60.0 * (slot + 1)
            if abs(angle - target) <= tol:
                return slot
        if angle <= tol:
            return constants.TOPO_SECTOR_COUNT - 1
        raise ValueError(f"Neighbour direction {angle:.2f} deg does not fall into any 60 degree sector.")

    def build_topology(self, triangles: Sequence[Sequence]):
        """
        Fills the 6-slot directional neighbour map from triangles whose vertices sit on
        indexed points. Triangles with a right angle are skipped; within a slot the
        shortest neighbour wins.
        """
        self.topology = {key: [None] * constants.TOPO_SECTOR_COUNT for key in self.keys}
        skipped = 0
        for tri in triangles:
            verts = [utils.as_point(v) for v in tri]
            if len(verts) != 3:
                raise ValueError("Triangles must have exactly three vertices.")
            if self._has_right_angle(verts):
                skipped += 1
                continue
            keys = [self.nearest_key(v) for v in verts]
            for a in range(3):
                for b in range(3):
                    if a == b or keys[a] == keys[b]:
                        continue
                    pa = self.point_of(keys[a])
                    pb = self.point_of(keys[b])
                    angle = signed_vec_angle(self.plane.x_axis, pb - pa, self.plane.normal)
                    slot = self._sector_of(angle)
                    dist = utils.distance(pa, pb)
                    current = self.topology[keys[a]][slot]
                    if current is None or dist < current[0]:
                        self.topology[keys[a]][slot] = (dist, keys[b])
        if skipped:
            logger.debug(f"Topology map skipped {skipped} right-angled triangles.")

    @staticmethod
    def _has_right_angle(verts: List[np.ndarray]) -> bool:
        for i in range(3):
            e1 = utils.normalize_vector(verts[(i + 1) % 3] - verts[i])
            e2 = utils.normalize_vector(verts[(i + 2) % 3] - verts[i])
            if abs(float(np.dot(e1, e2))) < 1e-3:
                return True
        return False

    def next_point_and_distance(self, key: GridKey, i0: int = 2, i1: int = 5,
                                max_draws: int = 10000) -> Optional[Tuple[np.ndarray, float]]:
        """
        Picks a neighbour slot in [i0, i1] drawn from Normal(3.5, 0.5); empty slots are
        redrawn. Returns (neighbour point, distance) or None when no slot in range is filled.
        """
        slots = self.topology.get(key)
        if slots is None:
            return None
        filled = [i for i in range(i0, i1 + 1) if 0 <= i < len(slots) and slots[i] is not None]
        if not filled:
            return None
        for _ in range(max_draws):
            idx = int(np.rint(self._rng.normal(constants.TOPO_NEXT_MEAN, constants.TOPO_NEXT_STD)))
            if i0 <= idx <= i1 and slots[idx] is not None:
                dist, nkey = slots[idx]
                return self.point_of(nkey), dist
        dist, nkey = slots[filled[0]]
        return self.point_of(nkey), dist


# --- Synthetic soil lattices ---
# Stand-ins for the soil partitioning engine's base grid.

def square_lattice_points(nx_: int, ny: int, pitch: float = 1.0, plane: Optional[Plane] = None) -> np.ndarray:
    plane = plane if plane is not None else Plane.world_xy()
    return np.array([plane.point_at(i * pitch, j * pitch) for j in range(ny) for i in range(nx_)])


def _triangular_point(plane: Plane, i: int, j: int, pitch: float) -> np.ndarray:
    offset = 0.5 * pitch if j % 2 else 0.0
    return plane.point_at(i * pitch + offset, j * pitch * np.sqrt(3.0) / 2.0)


def triangular_lattice_points(nx_: int, ny: int, pitch: float = 1.0, plane: Optional[Plane] = None) -> np.ndarray:
    plane = plane if plane is not None else Plane.world_xy()
    return np.array([_triangular_point(plane, i, j, pitch) for j in range(ny) for i in range(nx_)])


def triangular_lattice_triangles(nx_: int, ny: int, pitch: float = 1.0,
                                 plane: Optional[Plane] = None) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    plane = plane if plane is not None else Plane.world_xy()

    def pt(i, j):
        return _triangular_point(plane, i, j, pitch)

    triangles = []
    for j in range(ny - 1):
        for i in range(nx_ - 1):
            if j % 2 == 0:
                triangles.append((pt(i, j), pt(i + 1, j), pt(i, j + 1)))
                triangles.append((pt(i + 1, j), pt(i + 1, j + 1), pt(i, j + 1)))
            else:
                triangles.append((pt(i, j), pt(i + 1, j + 1), pt(i, j + 1)))
                triangles.append((pt(i, j), pt(i + 1, j), pt(i + 1, j + 1)))
    return triangles
