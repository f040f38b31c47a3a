# tests/test_visualization.py
import pytest
import os
import matplotlib
matplotlib.use("Agg")

from soilroot import visualization
from soilroot.data_structures import GrowthGraph, RootNodeType
from soilroot.geometry import Plane, Polyline


@pytest.fixture
def collections():
    return {
        "main": [Polyline.line([0, 0, 0], [0, 0, -1]), Polyline.line([0, 0, -1], [0, 0, -3])],
        "side": [Polyline.line([0, 0, -1], [1, 0, -2])],
    }


def test_analyze_segment_lengths_writes_csv(tmp_path, collections):
    df = visualization.analyze_segment_lengths(collections, str(tmp_path))
    assert len(df) == 3
    assert os.path.exists(tmp_path / "final_segment_lengths.csv")
    assert os.path.exists(tmp_path / "final_segment_length_distribution.png")


def test_analyze_segment_lengths_empty(tmp_path, caplog):
    assert visualization.analyze_segment_lengths({"main": []}, str(tmp_path)) is None
    assert "no root lines" in caplog.text


def test_analyze_branch_levels(tmp_path):
    g = GrowthGraph()
    root = g.add_root([0, 0, 0], [0, 0, -1])
    a = g.add_child(root, [0, 0, -1], RootNodeType.STEM)
    g.add_child(a, [0, 0, -2], RootNodeType.STEM)
    g.add_child(a, [1, 0, -2], RootNodeType.SIDE, branching=True)
    df = visualization.analyze_branch_levels(g.graph, str(tmp_path))
    assert sorted(df["branch_level"]) == [0, 0, 0, 1]
    assert (df["out_degree"] == 0).sum() == 2


def test_plot_root_lines_2d(tmp_path, collections):
    out = tmp_path / "roots.png"
    visualization.plot_root_lines_2d(collections, str(out), plane=Plane.world_xz())
    assert os.path.exists(out)


def test_generate_final_visualizations(tmp_path, collections):
    config = {"visualization": {"save_plots": True, "pyvista_screenshot": False}}
    visualization.generate_final_visualizations(config, str(tmp_path), collections, plane=Plane.world_xz())
    assert os.path.exists(tmp_path / "final_root_lines.png")
    assert os.path.exists(tmp_path / "final_segment_lengths.csv")
