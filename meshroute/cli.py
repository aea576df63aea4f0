#!/usr/bin/env python3
"""
meshroute CLI

Command-line interface for the capacity-mesh autorouter.

Usage:
    meshroute route <board.json> [options]
    meshroute inspect <board.json>
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_board(path: str):
    """Read a SimpleRouteJson board file; prints the error and returns None on failure."""
    from .types import SimpleRouteJson

    board_path = Path(path)
    if not board_path.exists():
        print(f"Error: Board file not found: {board_path}")
        return None
    try:
        with open(board_path, "r") as f:
            data = json.load(f)
        return SimpleRouteJson.from_dict(data)
    except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
        print(f"Error: Cannot load board from {board_path}: {e}")
        return None


def build_config(args):
    """RouterConfig from --config and --profile."""
    from .config import RouterConfig, get_design_rules

    config = RouterConfig.from_yaml(args.config) if args.config else RouterConfig()
    if args.profile:
        config = replace(config, design_rules=get_design_rules(args.profile))
    return config


def cmd_route(args):
    """Route a board and write the routes as JSON."""
    from .pipeline import AutoroutingPipeline
    from .types import FailedRoute
    from .visualizer import save_graphics_svg

    srj = load_board(args.board)
    if srj is None:
        return 1

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    print(f"Routing {args.board}")
    print(f"  Layers: {srj.layer_count}")
    print(f"  Obstacles: {len(srj.obstacles)}")
    print(f"  Connections: {len(srj.connections)}")

    pipeline = AutoroutingPipeline(srj, config)
    pipeline.solve()

    routes = pipeline.get_output_routes()
    failed = [r for r in routes if isinstance(r, FailedRoute)]
    routed = len(routes) - len(failed)
    vias = sum(len(r.vias) for r in routes if not isinstance(r, FailedRoute))

    print("\nPhases:")
    for phase, seconds in pipeline.time_spent_on_phase.items():
        print(f"  {phase:<20} {seconds:8.3f}s")
    print(f"\nRouted {routed}/{len(routes)} connections, {vias} vias")
    for route in failed:
        print(f"  FAILED {route.connection_name}: {route.reason}")

    output = json.dumps(pipeline.to_dict(), indent=2)
    if args.output:
        Path(args.output).write_text(output)
        print(f"\nSaved routes to: {args.output}")
    else:
        print(output)

    if args.svg:
        save_graphics_svg(pipeline.visualize(), args.svg, bounds=srj.bounds)
        print(f"Saved visualization to: {args.svg}")

    return 0 if pipeline.solved else 2


def cmd_inspect(args):
    """Build the capacity mesh only and print its statistics."""
    from .pipeline import AutoroutingPipeline

    srj = load_board(args.board)
    if srj is None:
        return 1

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    pipeline = AutoroutingPipeline(srj, config)
    pipeline.solve_until_phase("pathing")
    if pipeline.failed:
        print(f"Error: {pipeline.error}")
        return 1

    nodes = pipeline.capacity_nodes
    edges = pipeline.capacity_edges
    target_nodes = sum(1 for n in nodes if n.contains_target)
    obstacle_nodes = sum(1 for n in nodes if n.contains_obstacle)
    depths = [n.depth for n in nodes]

    print(f"Board: {args.board}")
    print(f"  Bounds: {srj.bounds.width:.2f} x {srj.bounds.height:.2f} mm")
    print(f"  Layers: {srj.layer_count}")
    print(f"  Connections: {len(pipeline.srj_with_point_pairs.connections)} point pairs")
    print("\nCapacity mesh:")
    print(f"  Nodes: {len(nodes)}")
    print(f"  Target nodes: {target_nodes}")
    print(f"  Obstacle nodes: {obstacle_nodes}")
    print(f"  Edges: {len(edges)}")
    if depths:
        print(f"  Depth: {min(depths)}-{max(depths)}")
    if nodes:
        total_capacity = sum(n.total_capacity for n in nodes)
        print(f"  Total capacity: {total_capacity:.1f}")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="meshroute - capacity-mesh PCB autorouter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  meshroute route board.json -o routes.json
  meshroute route board.json --svg routes.svg --profile fine_pitch
  meshroute route board.json --config router.yaml -v
  meshroute inspect board.json
        """,
    )

    parser.add_argument('--version', action='version', version='meshroute 0.1.0')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Route command
    route_parser = subparsers.add_parser('route', help='Route a board')
    route_parser.add_argument('board', help='Path to a SimpleRouteJson board file')
    route_parser.add_argument('-o', '--output', help='Output JSON file (default: stdout)')
    route_parser.add_argument('--svg', help='Write an SVG of the final state')
    route_parser.add_argument('--config', help='YAML file with router config overrides')
    route_parser.add_argument('--profile', help='Design rules profile (default: standard)')
    route_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')

    # Inspect command
    inspect_parser = subparsers.add_parser('inspect', help='Print capacity mesh statistics')
    inspect_parser.add_argument('board', help='Path to a SimpleRouteJson board file')
    inspect_parser.add_argument('--config', help='YAML file with router config overrides')
    inspect_parser.add_argument('--profile', help='Design rules profile (default: standard)')
    inspect_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.verbose)

    # Dispatch command
    commands = {
        'route': cmd_route,
        'inspect': cmd_inspect,
    }

    return commands[args.command](args)


if __name__ == '__main__':
    sys.exit(main())
