"""geoflow: dense RGB-D correspondences by 3D nearest-neighbour matching.

Main components:
- core: backprojection, window matching, forward transfer and backward scatter
- codecs: point field encoding/decoding
- cli: sequence warping from .npz files
"""

from .core import (
    FlowConfig,
    FlowEngine,
    ConfigurationError,
    ShapeError,
    pack_meta,
    unpack_meta,
    backproject,
    point_validity,
    compute_flow,
    compute_flow_grad,
    compute_flow_op,
    ComputeFlow,
)
from .codecs import PointFieldCodec

__version__ = "0.1.0"
__all__ = [
    # Core
    "FlowConfig",
    "FlowEngine",
    "ConfigurationError",
    "ShapeError",
    "pack_meta",
    "unpack_meta",
    "backproject",
    "point_validity",
    "compute_flow",
    "compute_flow_grad",
    "compute_flow_op",
    "ComputeFlow",
    # Codecs
    "PointFieldCodec",
]
