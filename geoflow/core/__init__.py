"""geoflow core: depth backprojection and 3D nearest-neighbour transfer."""

from .config import FlowConfig
from .errors import ConfigurationError, ShapeError
from .engine import FlowEngine, match_statistics
from .camera import pack_meta, unpack_meta, backproject, reproject_pixel, point_validity
from .matching import MatchResult, match_points
from .transfer import compute_flow, compute_flow_grad, validate_inputs, validate_grad_inputs
from .reference import compute_flow_reference, compute_flow_grad_reference
from .function import ComputeFlowFunction, ComputeFlow, compute_flow_op

__all__ = [
    "FlowConfig",
    "ConfigurationError",
    "ShapeError",
    "FlowEngine",
    "match_statistics",
    "pack_meta",
    "unpack_meta",
    "backproject",
    "reproject_pixel",
    "point_validity",
    "MatchResult",
    "match_points",
    "compute_flow",
    "compute_flow_grad",
    "validate_inputs",
    "validate_grad_inputs",
    "compute_flow_reference",
    "compute_flow_grad_reference",
    "ComputeFlowFunction",
    "ComputeFlow",
    "compute_flow_op",
]
