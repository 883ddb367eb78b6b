"""Camera metadata layout and depth backprojection into world space."""

import logging
from typing import Optional, Tuple

import numpy as np
import torch

from .errors import ShapeError

logger = logging.getLogger(__name__)

# Flat metadata record, one per batch element: meta[n, 0, 0, :]
META_INTRINSIC = slice(0, 9)
META_INTRINSIC_INV = slice(9, 18)
META_WORLD2LIVE = slice(18, 30)
META_LIVE2WORLD = slice(30, 42)
META_VOXEL_STEP = slice(42, 45)
META_VOXEL_MIN = slice(45, 48)
META_MIN_LENGTH = 42
META_LENGTH = 48


def _as_batched(x: torch.Tensor, dims: int) -> torch.Tensor:
    return x.unsqueeze(0) if x.dim() == dims else x


def _rigid_inverse(pose: torch.Tensor) -> torch.Tensor:
    """Invert a batch of [N, 3, 4] rigid poses."""
    R, t = pose[:, :, :3], pose[:, :, 3:]
    Rt = R.transpose(1, 2)
    return torch.cat([Rt, -Rt @ t], dim=2)


def pack_meta(
    K: torch.Tensor,
    world2live: torch.Tensor,
    voxel_step: Optional[torch.Tensor] = None,
    voxel_min: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Build the per-batch metadata record.

    Args:
        K: [N, 3, 3] or [3, 3] intrinsic matrix
        world2live: [N, 3, 4], [N, 4, 4] or unbatched rigid pose
        voxel_step: optional [N, 3] or [3]
        voxel_min: optional [N, 3] or [3]

    Returns:
        meta: [N, 1, 1, 48]
    """
    K = torch.as_tensor(K)
    dtype = K.dtype if K.is_floating_point() else torch.float32
    K = _as_batched(K.to(dtype), 2)
    world2live = torch.as_tensor(world2live, dtype=dtype, device=K.device)
    world2live = _as_batched(world2live, 2)[:, :3, :4]

    N = max(K.shape[0], world2live.shape[0])
    K = K.expand(N, 3, 3)
    world2live = world2live.expand(N, 3, 4)

    # Invert in float64 so K_inv does not drift for float32 records
    K_inv = torch.linalg.inv(K.double()).to(dtype)
    live2world = _rigid_inverse(world2live.double()).to(dtype)

    def _vec3(v):
        if v is None:
            return torch.zeros(N, 3, dtype=dtype, device=K.device)
        v = torch.as_tensor(v, dtype=dtype, device=K.device)
        return _as_batched(v, 1).expand(N, 3)

    meta = torch.cat([
        K.reshape(N, 9),
        K_inv.reshape(N, 9),
        world2live.reshape(N, 12),
        live2world.reshape(N, 12),
        _vec3(voxel_step),
        _vec3(voxel_min),
    ], dim=1)
    return meta.view(N, 1, 1, META_LENGTH)


def unpack_meta(meta: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Return inverse intrinsics [N, 3, 3] and live-to-world pose [N, 3, 4]."""
    if meta.dim() != 4:
        raise ShapeError("meta data must be 4-dimensional")
    if meta.shape[-1] < META_MIN_LENGTH:
        raise ShapeError(f"Need at least {META_MIN_LENGTH} meta values, got {meta.shape[-1]}")
    record = meta[:, 0, 0]
    N = record.shape[0]
    return record[:, META_INTRINSIC_INV].reshape(N, 3, 3), record[:, META_LIVE2WORLD].reshape(N, 3, 4)


def point_validity(points: torch.Tensor) -> torch.Tensor:
    """Boolean [N, H, W] mask of defined points (NaN in any channel means undefined)."""
    return ~torch.isnan(points).any(dim=-1)


def backproject(depth: torch.Tensor, meta: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Backproject a depth map into world-space points.

    Pixel (h, w) becomes K_inv @ (w, h, 1) scaled by depth, then moved to
    world coordinates with the live-to-world pose. Non-positive depth gives an
    undefined point.

    Args:
        depth: [N, H, W, 1] depth map
        meta: [N, 1, 1, M] metadata record, M >= 42

    Returns:
        points: [N, H, W, 3] world points, NaN where undefined
        valid: [N, H, W] bool
    """
    if depth.dim() != 4 or depth.shape[-1] != 1:
        raise ShapeError("depth must be [N, H, W, 1]")
    N, H, W, _ = depth.shape
    device, dtype = depth.device, depth.dtype

    K_inv, pose = unpack_meta(meta.to(device=device, dtype=dtype))
    d = depth[..., 0]
    valid = d > 0

    y, x = torch.meshgrid(torch.arange(H, device=device, dtype=dtype),
                          torch.arange(W, device=device, dtype=dtype), indexing="ij")

    def _row(m, i):
        return [m[:, i, j].view(N, 1, 1) for j in range(m.shape[2])]

    # Explicit sums keep the evaluation order fixed across backends
    ray = []
    for i in range(3):
        a, b, c = _row(K_inv, i)
        ray.append(d * (a * x + b * y + c))
    X, Y, Z = ray

    world = []
    for i in range(3):
        a, b, c, t = _row(pose, i)
        world.append(a * X + b * Y + c * Z + t)

    points = torch.stack(world, dim=-1)
    points = torch.where(valid.unsqueeze(-1), points, torch.full_like(points, float("nan")))
    return points, valid


def reproject_pixel(w: int, h: int, d: float, record) -> Optional[Tuple[float, float, float]]:
    """Reproject a single pixel with one flat metadata record.

    Returns None when the depth is not positive.
    """
    if not d > 0:
        return None
    m = np.asarray(record, dtype=np.float64).reshape(-1)
    RX = m[9] * w + m[10] * h + m[11]
    RY = m[12] * w + m[13] * h + m[14]
    RZ = m[15] * w + m[16] * h + m[17]
    X, Y, Z = d * RX, d * RY, d * RZ
    X1 = m[30] * X + m[31] * Y + m[32] * Z + m[33]
    Y1 = m[34] * X + m[35] * Y + m[36] * Z + m[37]
    Z1 = m[38] * X + m[39] * Y + m[40] * Z + m[41]
    return float(X1), float(Y1), float(Z1)
