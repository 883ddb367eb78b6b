"""Shared fixtures: camera records and random RGB-D inputs."""

import math

import pytest
import torch

from geoflow.core import pack_meta, backproject


def _rotation(rx: float, ry: float, rz: float, dtype=torch.float64) -> torch.Tensor:
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)
    Rx = torch.tensor([[1, 0, 0], [0, cx, -sx], [0, sx, cx]], dtype=dtype)
    Ry = torch.tensor([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]], dtype=dtype)
    Rz = torch.tensor([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]], dtype=dtype)
    return Rz @ Ry @ Rx


@pytest.fixture
def identity_meta():
    """Factory: identity intrinsics and pose for N batch elements."""
    def make(N: int = 1, dtype=torch.float64) -> torch.Tensor:
        K = torch.eye(3, dtype=dtype).expand(N, 3, 3)
        pose = torch.eye(4, dtype=dtype)[:3].expand(N, 3, 4)
        return pack_meta(K, pose)
    return make


@pytest.fixture
def pinhole_meta():
    """Factory: pinhole intrinsics with a small rigid motion per batch element."""
    def make(N: int = 1, H: int = 8, W: int = 10, seed: int = 0, shift: float = 0.0,
             dtype=torch.float64) -> torch.Tensor:
        g = torch.Generator().manual_seed(seed)
        Ks, poses = [], []
        for _ in range(N):
            angles = (torch.rand(3, generator=g, dtype=dtype) - 0.5) * 0.1
            t = (torch.rand(3, 1, generator=g, dtype=dtype) - 0.5) * 0.1
            t[0] += shift
            R = _rotation(*angles.tolist(), dtype=dtype)
            Ks.append(torch.tensor([[W * 1.2, 0, W / 2], [0, W * 1.2, H / 2], [0, 0, 1]], dtype=dtype))
            poses.append(torch.cat([R, t], dim=1))
        return pack_meta(torch.stack(Ks), torch.stack(poses))
    return make


@pytest.fixture
def random_inputs(pinhole_meta):
    """Factory: (data, prev_points, depth, meta) with holes in both depth maps.

    The previous camera is shifted 2cm along x, a fraction of one pixel's
    footprint, so matches land on the pixel itself or a neighbour.
    """
    def make(N: int = 2, H: int = 8, W: int = 10, C: int = 4, seed: int = 0, dtype=torch.float64):
        g = torch.Generator().manual_seed(seed)
        meta = pinhole_meta(N, H, W, seed=seed, dtype=dtype)
        prev_meta = pinhole_meta(N, H, W, seed=seed, shift=0.02, dtype=dtype)

        depth = 1.0 + torch.rand(N, H, W, 1, generator=g, dtype=dtype) * 0.2
        depth[torch.rand(N, H, W, 1, generator=g, dtype=dtype) < 0.15] = 0.0
        prev_depth = depth + (torch.rand(N, H, W, 1, generator=g, dtype=dtype) - 0.5) * 0.02
        prev_depth[torch.rand(N, H, W, 1, generator=g, dtype=dtype) < 0.15] = -1.0

        prev_points, _ = backproject(prev_depth, prev_meta)
        data = torch.rand(N, H, W, C, generator=g, dtype=dtype) + 0.5
        return data, prev_points, depth, meta
    return make
