# soilroot/io_utils.py
import numpy as np
import pandas as pd
import pyvista as pv
import os
import logging
import yaml
from typing import Dict, List, Optional, Sequence

from soilroot.geometry import Polyline

logger = logging.getLogger(__name__)

def load_soil_points_txt(filepath: str) -> Optional[np.ndarray]:
    """
    Loads soil sample points from a TXT file.
    Expected format, one point per line: x y [z] (whitespace or comma separated).
    Lines starting with '#' are comments; a missing z is taken as 0.

    Returns:
        np.ndarray: (N, 3) point array, or None if the file is missing or holds no valid point.
    """
    if not os.path.exists(filepath):
        logger.warning(f"Soil point file not found: {filepath}. Skipping.")
        return None

    points = []
    try:
        with open(filepath, 'r') as f:
            for line_num, line in enumerate(f):
                line = line.strip()
                if not line or line.startswith('#'): # Skip empty lines or comments
                    continue
                parts = list(map(float, line.replace(',', ' ').split()))
                if len(parts) == 2:
                    points.append(parts + [0.0])
                elif len(parts) == 3:
                    points.append(parts)
                else:
                    logger.warning(f"Skipping malformed line {line_num+1} in {filepath}: {line}")
    except (OSError, ValueError) as e:
        logger.error(f"Error loading soil point file {filepath}: {e}")
        return None

    if not points:
        logger.error(f"No valid points found in TXT file: {filepath}")
        return None
    logger.info(f"Loaded {len(points)} soil points from: {filepath}")
    return np.array(points, dtype=float)

def load_region_curves_yaml(filepath: str) -> Optional[Dict[str, List]]:
    """
    Loads attractor / repeller curves from a YAML file with top-level keys
    'attractors' and 'repellers', each a list of point lists (or {center, radius} circles).
    """
    if not os.path.exists(filepath):
        logger.warning(f"Region curve file not found: {filepath}. Skipping.")
        return None
    try:
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing region curve file {filepath}: {e}")
        return None
    regions = {
        "attractors": data.get("attractors") or [],
        "repellers": data.get("repellers") or [],
    }
    logger.info(f"Loaded {len(regions['attractors'])} attractor and {len(regions['repellers'])} "
                f"repeller curves from: {filepath}")
    return regions

def _lines_to_polydata(lines: Sequence[Polyline]) -> pv.PolyData:
    # Format: [n_points_in_line0, pt0_idx, pt1_idx, ..., n_points_in_line1, ...]
    points = []
    connectivity = []
    offset = 0
    for ln in lines:
        n = len(ln)
        points.extend(ln.points)
        connectivity.append(n)
        connectivity.extend(range(offset, offset + n))
        offset += n
    if not points:
        return pv.PolyData()
    return pv.PolyData(np.array(points), lines=np.array(connectivity))

def save_root_lines_vtp(lines: Sequence[Polyline], filepath: str, kind: Optional[str] = None):
    """
    Saves polylines to a VTP file, one cell per polyline. Cell data: 'length'; the kind name,
    when given, is stored as field data 'kind'.
    """
    poly_data = _lines_to_polydata(lines)
    if poly_data.n_cells > 0:
        poly_data.cell_data['length'] = np.array([ln.length for ln in lines])
        if kind is not None:
            poly_data.field_data['kind'] = np.array([kind])
    else:
        logger.warning(f"No root lines to save; writing an empty VTP file to {filepath}.")

    try:
        poly_data.save(filepath)
        logger.info(f"Saved {poly_data.n_cells} root lines to VTP: {filepath}")
    except Exception as e:
        logger.error(f"Error saving root lines to VTP {filepath}: {e}")
        raise

def save_root_branches_vtp(collections: Dict[str, Sequence[Polyline]], filepath: str):
    """
    Saves several named line collections (e.g. master / tap / explorer) into one VTP.
    Cell data 'kind_id' indexes the collection names kept in field data 'kinds'.
    """
    names = list(collections.keys())
    all_lines: List[Polyline] = []
    kind_ids: List[int] = []
    for i, name in enumerate(names):
        all_lines.extend(collections[name])
        kind_ids.extend([i] * len(collections[name]))

    poly_data = _lines_to_polydata(all_lines)
    if poly_data.n_cells > 0:
        poly_data.cell_data['kind_id'] = np.array(kind_ids, dtype=int)
        poly_data.cell_data['length'] = np.array([ln.length for ln in all_lines])
        poly_data.field_data['kinds'] = np.array(names)
    try:
        poly_data.save(filepath)
        logger.info(f"Saved {poly_data.n_cells} root branches ({', '.join(names)}) to VTP: {filepath}")
    except Exception as e:
        logger.error(f"Error saving root branches to VTP {filepath}: {e}")
        raise

def root_lines_dataframe(collections: Dict[str, Sequence[Polyline]]) -> pd.DataFrame:
    rows = []
    for kind, lines in collections.items():
        for i, ln in enumerate(lines):
            s, e = ln.start, ln.end
            rows.append({
                "kind": kind, "line_id": i, "n_points": len(ln), "length": ln.length,
                "start_x": s[0], "start_y": s[1], "start_z": s[2],
                "end_x": e[0], "end_y": e[1], "end_z": e[2],
            })
    columns = ["kind", "line_id", "n_points", "length",
               "start_x", "start_y", "start_z", "end_x", "end_y", "end_z"]
    return pd.DataFrame(rows, columns=columns)

def save_root_lines_csv(collections: Dict[str, Sequence[Polyline]], filepath: str):
    """Saves one CSV row per line: kind, id, point count, length and end points."""
    df = root_lines_dataframe(collections)
    try:
        df.to_csv(filepath, index=False, float_format='%.6f')
        logger.info(f"Saved {len(df)} root lines to CSV: {filepath}")
    except Exception as e:
        logger.error(f"Error saving root lines to CSV {filepath}: {e}")
        raise

def save_simulation_parameters(config: dict, filepath: str):
    """Saves the simulation configuration to a YAML file."""
    try:
        with open(filepath, 'w') as f:
            yaml.dump(config, f, sort_keys=False, indent=4)
        logger.info(f"Saved simulation parameters to: {filepath}")
    except Exception as e:
        logger.error(f"Error saving simulation parameters to {filepath}: {e}")
        raise
