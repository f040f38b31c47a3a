# soilroot/visualization.py
from __future__ import annotations # Must be first line

import logging
import os
import numpy as np
import networkx as nx
from typing import Optional, Dict, List, Sequence
import pandas as pd

try:
    import pyvista as pv
    PYVISTA_AVAILABLE = True
except ImportError:
    PYVISTA_AVAILABLE = False
    pv = None

try:
    import matplotlib.pyplot as plt
    MATPLOTLIB_AVAILABLE = True
except ImportError:
    MATPLOTLIB_AVAILABLE = False
    plt = None

from soilroot import io_utils, config_manager
from soilroot.geometry import Plane, Polyline

logger = logging.getLogger(__name__)

KIND_COLORS = {
    "main": "saddlebrown", "side": "peru", "dead": "lightgray",
    "master": "saddlebrown", "tap": "darkred", "explorer": "olivedrab",
    "absorbent": "tan",
}

# --- Plotting helper for distributions ---
def _plot_histogram(data: List[float], title: str, xlabel: str, output_path: str, bins: int = 30, density: bool = False):
    if not MATPLOTLIB_AVAILABLE:
        logger.warning(f"Matplotlib not available. Skipping histogram plot: {title}")
        return
    if not data:
        logger.warning(f"No data to plot for histogram: {title}")
        return
    valid_data = [x for x in data if np.isfinite(x)]
    if not valid_data:
        logger.warning(f"No finite data to plot for histogram (all NaN/Inf): {title}")
        return

    plt.figure(figsize=(8, 6))
    plt.hist(valid_data, bins=bins, color='skyblue', edgecolor='black', density=density)
    plt.title(title)
    plt.xlabel(xlabel)
    plt.ylabel("Frequency" if not density else "Density")
    plt.grid(axis='y', alpha=0.75)
    try:
        plt.savefig(output_path)
        logger.info(f"Saved histogram '{title}' to {output_path}")
    except Exception as e:
        logger.error(f"Error saving histogram '{title}' to {output_path}: {e}")
    finally:
        plt.close()

# --- Quantitative analysis ---
def analyze_segment_lengths(collections: Dict[str, Sequence[Polyline]], output_dir: str,
                            filename_prefix: str = "final_") -> Optional[pd.DataFrame]:
    rows = [{"kind": kind, "length": ln.length} for kind, lines in collections.items() for ln in lines]
    if not rows:
        logger.warning("Segment length analysis: no root lines.")
        return None
    df_lengths = pd.DataFrame(rows)
    csv_path = os.path.join(output_dir, f"{filename_prefix}segment_lengths.csv")
    df_lengths.to_csv(csv_path, index=False); logger.info(f"Saved segment length data to {csv_path}")
    summary = df_lengths.groupby("kind")["length"].agg(["count", "mean", "min", "max", "sum"])
    logger.info(f"Segment length summary:\n{summary}")
    plot_path = os.path.join(output_dir, f"{filename_prefix}segment_length_distribution.png")
    _plot_histogram(df_lengths["length"].tolist(), "Distribution of Root Segment Lengths", "Length", plot_path)
    return df_lengths

def analyze_branch_levels(graph: nx.DiGraph, output_dir: str, filename_prefix: str = "final_") -> Optional[pd.DataFrame]:
    """Node counts per branch level and out-degree (0 = tip, 2 = branching node)."""
    if graph is None or graph.number_of_nodes() == 0:
        logger.warning("Branch level analysis: Graph is empty or None.")
        return None
    df = pd.DataFrame([{"node": n, "branch_level": data.get("branch_level", 0), "out_degree": graph.out_degree(n)}
                       for n, data in graph.nodes(data=True)])
    csv_path = os.path.join(output_dir, f"{filename_prefix}branch_levels.csv")
    df.to_csv(csv_path, index=False)
    logger.info(f"Saved branch level data to {csv_path}")
    logger.info(f"Tips: {(df['out_degree'] == 0).sum()}, branching nodes: {(df['out_degree'] > 1).sum()}")
    return df

# --- Plots ---
def plot_root_lines_2d(collections: Dict[str, Sequence[Polyline]], output_path: str,
                       plane: Optional[Plane] = None, title: str = "Root System"):
    """Draws every collection in the plane's (u, v) coordinates, one colour per kind."""
    if not MATPLOTLIB_AVAILABLE:
        logger.warning(f"Matplotlib not available. Skipping 2D plot: {title}")
        return
    plane = plane if plane is not None else Plane.world_xy()

    fig, ax = plt.subplots(figsize=(8, 8))
    try:
        for kind, lines in collections.items():
            color = KIND_COLORS.get(kind, "black")
            for i, ln in enumerate(lines):
                uv = plane.closest_parameters(ln.points)
                ax.plot(uv[:, 0], uv[:, 1], color=color, linewidth=1.0, label=kind if i == 0 else None)
        ax.set_aspect('equal')
        ax.set_title(title)
        if ax.get_legend_handles_labels()[0]:
            ax.legend(loc='best')
        fig.savefig(output_path, dpi=150)
        logger.info(f"Saved 2D root plot to {output_path}")
    except Exception as e:
        logger.error(f"Error saving 2D root plot to {output_path}: {e}")
    finally:
        plt.close(fig)

def plot_root_branches_pyvista(collections: Dict[str, Sequence[Polyline]], title: str = "Root System",
                               output_screenshot_path: Optional[str] = None, background_color: str = "white"):
    if not PYVISTA_AVAILABLE: logger.warning("PyVista not available. Skipping 3D PyVista plot."); return

    plotter = pv.Plotter(off_screen=output_screenshot_path is not None, window_size=[1200, 900])
    plotter.background_color = background_color
    plotter.add_title(title, font_size=16)
    for kind, lines in collections.items():
        mesh = io_utils._lines_to_polydata(lines)
        if mesh.n_points == 0:
            continue
        plotter.add_mesh(mesh, color=KIND_COLORS.get(kind, "black"), line_width=3, label=kind)
    plotter.camera_position = 'iso'
    plotter.add_axes()

    if output_screenshot_path:
        plotter.show(auto_close=True, screenshot=output_screenshot_path)
        logger.info(f"Saved PyVista plot to {output_screenshot_path}")
    else:
        logger.info("Displaying PyVista plot. Close window to continue.")
        plotter.show()

def generate_final_visualizations(config: dict, output_dir: str, collections: Dict[str, Sequence[Polyline]],
                                  plane: Optional[Plane] = None, graph: Optional[nx.DiGraph] = None):
    logger.info("Generating final visualizations and quantitative analyses...")
    analyze_segment_lengths(collections, output_dir)
    if graph is not None:
        analyze_branch_levels(graph, output_dir)

    if config_manager.get_param(config, "visualization.save_plots", True):
        plot_root_lines_2d(collections, os.path.join(output_dir, "final_root_lines.png"), plane=plane,
                           title=f"Root System ({sum(len(v) for v in collections.values())} lines)")
    if config_manager.get_param(config, "visualization.pyvista_screenshot", False):
        plot_root_branches_pyvista(collections, output_screenshot_path=os.path.join(output_dir, "final_root_3D.png"))
