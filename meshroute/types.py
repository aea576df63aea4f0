"""Core data model for the capacity-mesh autorouter.

Board input ("SimpleRouteJson") is parsed into dataclasses with snake_case
fields. Everything downstream of parsing (mesh nodes, edges, capacity paths,
port points, high-density routes) is also a plain dataclass; relations
between nodes are stored as ids, never as live references.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Any

CapacityMeshNodeId = str


@dataclass(frozen=True)
class Point:
    """A 2D point in board coordinates (mm)."""
    x: float
    y: float


@dataclass
class RoutePoint:
    """A 3D polyline vertex: position plus copper layer index."""
    x: float
    y: float
    z: int

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass
class Bounds:
    """Axis-aligned rectangle."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return Point((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y), the order used by spatial indexes."""
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @classmethod
    def from_center(cls, center: Point, width: float, height: float) -> "Bounds":
        return cls(
            min_x=center.x - width / 2,
            max_x=center.x + width / 2,
            min_y=center.y - height / 2,
            max_y=center.y + height / 2,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "Bounds":
        try:
            return cls(
                min_x=float(data["minX"]),
                max_x=float(data["maxX"]),
                min_y=float(data["minY"]),
                max_y=float(data["maxY"]),
            )
        except KeyError as e:
            raise ValueError(f"bounds is missing field {e.args[0]}") from e

    def to_dict(self) -> Dict[str, float]:
        return {
            "minX": self.min_x,
            "maxX": self.max_x,
            "minY": self.min_y,
            "maxY": self.max_y,
        }


_INNER_LAYER_RE = re.compile(r"^inner(\d+)$")


def map_layer_name_to_z(layer_name: str, layer_count: int) -> int:
    """Map a layer name ("top", "bottom", "inner1", ...) to a z index.

    top is always z=0 and bottom is always the last layer.
    """
    if layer_name == "top":
        return 0
    if layer_name == "bottom":
        return layer_count - 1
    match = _INNER_LAYER_RE.match(layer_name)
    if match:
        return int(match.group(1))
    raise ValueError(f"Unknown layer name: {layer_name!r}")


def map_z_to_layer_name(z: int, layer_count: int) -> str:
    if z == 0:
        return "top"
    if z == layer_count - 1:
        return "bottom"
    return f"inner{z}"


@dataclass
class Obstacle:
    """A rectangular keepout or pad on one or more layers."""
    center: Point
    width: float
    height: float
    layers: List[str] = field(default_factory=lambda: ["top"])
    connected_to: List[str] = field(default_factory=list)  # Net/connection names
    obstacle_type: str = "rect"
    z_layers: List[int] = field(default_factory=list)  # Filled from layers

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_center(self.center, self.width, self.height)

    def occupies_z(self, z: int) -> bool:
        return z in self.z_layers

    @classmethod
    def from_dict(cls, data: Dict[str, Any], layer_count: int) -> "Obstacle":
        if "center" not in data:
            raise ValueError("obstacle is missing field 'center'")
        layers = list(data.get("layers") or ["top"])
        return cls(
            center=Point(float(data["center"]["x"]), float(data["center"]["y"])),
            width=float(data["width"]),
            height=float(data["height"]),
            layers=layers,
            connected_to=list(data.get("connectedTo") or []),
            obstacle_type=data.get("type", "rect"),
            z_layers=sorted({map_layer_name_to_z(l, layer_count) for l in layers}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.obstacle_type,
            "center": {"x": self.center.x, "y": self.center.y},
            "width": self.width,
            "height": self.height,
            "layers": list(self.layers),
            "connectedTo": list(self.connected_to),
        }


@dataclass
class ConnectionPoint:
    """A point that must be connected; carries a layer or a port id."""
    x: float
    y: float
    layer: Optional[str] = None
    pcb_port_id: Optional[str] = None
    z: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], layer_count: int) -> "ConnectionPoint":
        if "x" not in data or "y" not in data:
            raise ValueError("pointsToConnect entry requires 'x' and 'y'")
        layer = data.get("layer")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            layer=layer,
            pcb_port_id=data.get("pcb_port_id"),
            z=map_layer_name_to_z(layer, layer_count) if layer else 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"x": self.x, "y": self.y}
        if self.layer is not None:
            result["layer"] = self.layer
        if self.pcb_port_id is not None:
            result["pcb_port_id"] = self.pcb_port_id
        return result


@dataclass
class Connection:
    """A named set of points to be electrically joined."""
    name: str
    points_to_connect: List[ConnectionPoint]
    net_name: Optional[str] = None  # Set when split out of a larger net

    @classmethod
    def from_dict(cls, data: Dict[str, Any], layer_count: int) -> "Connection":
        if "name" not in data:
            raise ValueError("connection is missing field 'name'")
        return cls(
            name=data["name"],
            points_to_connect=[
                ConnectionPoint.from_dict(p, layer_count)
                for p in data.get("pointsToConnect", [])
            ],
            net_name=data.get("netName"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "pointsToConnect": [p.to_dict() for p in self.points_to_connect],
        }
        if self.net_name is not None:
            result["netName"] = self.net_name
        return result


@dataclass
class SimpleRouteJson:
    """Board input: outline, obstacles and connections."""
    layer_count: int
    min_trace_width: float
    bounds: Bounds
    obstacles: List[Obstacle] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimpleRouteJson":
        for key in ("layerCount", "bounds"):
            if key not in data:
                raise ValueError(f"board is missing field '{key}'")
        layer_count = int(data["layerCount"])
        if layer_count < 1:
            raise ValueError(f"layerCount must be >= 1, got {layer_count}")
        return cls(
            layer_count=layer_count,
            min_trace_width=float(data.get("minTraceWidth", 0.15)),
            bounds=Bounds.from_dict(data["bounds"]),
            obstacles=[
                Obstacle.from_dict(o, layer_count) for o in data.get("obstacles") or []
            ],
            connections=[
                Connection.from_dict(c, layer_count) for c in data.get("connections") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layerCount": self.layer_count,
            "minTraceWidth": self.min_trace_width,
            "bounds": self.bounds.to_dict(),
            "obstacles": [o.to_dict() for o in self.obstacles],
            "connections": [c.to_dict() for c in self.connections],
        }


@dataclass
class CapacityMeshNode:
    """A rectangular mesh cell with per-layer capacity.

    ``parent_id`` records the subdivision this node came from; it is an id
    lookup into the node arena, never a reference.
    """
    capacity_mesh_node_id: CapacityMeshNodeId
    center: Point
    width: float
    height: float
    layer: str = "top"
    available_z: List[int] = field(default_factory=lambda: [0])
    total_capacity: float = 0.0
    used_capacity: float = 0.0
    contains_obstacle: bool = False
    contains_target: bool = False
    completely_inside_obstacle: bool = False
    target_connection_name: Optional[str] = None
    parent_id: Optional[CapacityMeshNodeId] = None
    depth: int = 0

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_center(self.center, self.width, self.height)

    @property
    def is_single_layer(self) -> bool:
        return len(self.available_z) == 1


@dataclass
class CapacityMeshEdge:
    """Two bordering mesh nodes and the bounding box of their shared border."""
    capacity_mesh_edge_id: str
    node_ids: Tuple[CapacityMeshNodeId, CapacityMeshNodeId]
    bounds: Optional[Bounds] = None

    def other(self, node_id: CapacityMeshNodeId) -> CapacityMeshNodeId:
        a, b = self.node_ids
        return b if a == node_id else a


@dataclass
class ConnectionTerminal:
    """Start and end mesh nodes of a connection (globally or in a section)."""
    connection_name: str
    start_node_id: CapacityMeshNodeId
    end_node_id: CapacityMeshNodeId


@dataclass
class CapacityPath:
    """Ordered mesh-node path of one connection."""
    capacity_path_id: str
    connection_name: str
    node_ids: List[CapacityMeshNodeId]


@dataclass
class PortPoint:
    """A concrete boundary coordinate a connection passes through."""
    x: float
    y: float
    z: int
    connection_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z, "connectionName": self.connection_name}


@dataclass
class NodePortSegment:
    """The shared border between a node and one of its path neighbours."""
    capacity_mesh_node_id: CapacityMeshNodeId
    start: Point
    end: Point
    connection_names: List[str] = field(default_factory=list)
    available_z: List[int] = field(default_factory=lambda: [0])
    node_port_segment_id: Optional[str] = None


@dataclass
class SegmentWithAssignedPoints(NodePortSegment):
    """A port segment plus the point each crossing connection was given."""
    assigned_points: List[PortPoint] = field(default_factory=list)


@dataclass
class NodeWithPortPoints:
    """One mesh node and the port points to be routed inside it."""
    capacity_mesh_node_id: CapacityMeshNodeId
    center: Point
    width: float
    height: float
    port_points: List[PortPoint] = field(default_factory=list)
    available_z: List[int] = field(default_factory=lambda: [0, 1])

    @property
    def bounds(self) -> Bounds:
        return Bounds.from_center(self.center, self.width, self.height)


@dataclass
class HighDensityRoute:
    """Final trace polyline and vias of one connection (or one fragment)."""
    connection_name: str
    route: List[RoutePoint]
    vias: List[Point] = field(default_factory=list)
    trace_thickness: float = 0.15
    via_diameter: float = 0.6

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectionName": self.connection_name,
            "traceThickness": self.trace_thickness,
            "viaDiameter": self.via_diameter,
            "route": [p.to_dict() for p in self.route],
            "vias": [{"x": v.x, "y": v.y} for v in self.vias],
        }


@dataclass
class FailedRoute:
    """Explicit failure marker for a connection that could not be routed."""
    connection_name: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"connectionName": self.connection_name, "failed": True, "reason": self.reason}
