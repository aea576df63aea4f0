"""
Tests for the meshroute command line interface.

Tests cover:
- Routing a board file to JSON and SVG
- Mesh inspection
- Error reporting for bad input
"""

import json

import pytest
import yaml

from meshroute.cli import main


FAST_ROUTER = {
    "router": {
        "capacity_depth": 3,
        "optimizer_iterations": 200,
        "max_section_optimizations": 5,
        "max_unravel_sections": 5,
        "unravel_max_iterations_per_section": 200,
        "high_density_max_iterations": 50000,
    }
}


@pytest.fixture
def board_file(tmp_path, simple_board_dict):
    path = tmp_path / "board.json"
    path.write_text(json.dumps(simple_board_dict))
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "router.yaml"
    path.write_text(yaml.safe_dump(FAST_ROUTER))
    return path


class TestRouteCommand:
    """Tests for `meshroute route`."""

    def test_writes_routes(self, board_file, config_file, tmp_path, capsys):
        output = tmp_path / "routes.json"
        code = main(["route", str(board_file), "--config", str(config_file), "-o", str(output)])
        assert code == 0

        data = json.loads(output.read_text())
        assert data["solved"] is True
        assert [r["connectionName"] for r in data["routes"]] == ["a"]
        assert "Routed 1/1 connections" in capsys.readouterr().out

    def test_prints_json_without_output(self, board_file, config_file, capsys):
        main(["route", str(board_file), "--config", str(config_file)])
        out = capsys.readouterr().out
        assert '"connectionName": "a"' in out

    def test_writes_svg(self, board_file, config_file, tmp_path):
        svg = tmp_path / "out" / "routes.svg"
        main(["route", str(board_file), "--config", str(config_file), "--svg", str(svg)])
        assert svg.read_text().startswith("<svg")

    def test_profile(self, board_file, config_file, tmp_path):
        output = tmp_path / "routes.json"
        main([
            "route", str(board_file), "--config", str(config_file),
            "--profile", "coarse", "-o", str(output),
        ])
        data = json.loads(output.read_text())
        assert data["routes"][0]["traceThickness"] == 0.25

    def test_unknown_profile(self, board_file, capsys):
        assert main(["route", str(board_file), "--profile", "imaginary"]) == 1
        assert "Unknown design rules" in capsys.readouterr().out

    def test_missing_board(self, tmp_path, capsys):
        assert main(["route", str(tmp_path / "nope.json")]) == 1
        assert "Board file not found" in capsys.readouterr().out

    def test_invalid_board(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"layerCount": 2, "connections": []}))
        assert main(["route", str(path)]) == 1
        assert "Cannot load board" in capsys.readouterr().out

    def test_not_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert main(["route", str(path)]) == 1


class TestInspectCommand:
    """Tests for `meshroute inspect`."""

    def test_prints_mesh_statistics(self, board_file, config_file, capsys):
        assert main(["inspect", str(board_file), "--config", str(config_file)]) == 0
        out = capsys.readouterr().out
        assert "Capacity mesh:" in out
        assert "Target nodes: " in out
        assert "1 point pairs" in out


def test_no_command(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()
