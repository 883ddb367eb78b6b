"""FlowEngine: backend dispatch and frame-sequence warping."""

import logging
from typing import Dict, Optional, Tuple

import numpy as np
import torch
from tqdm import tqdm

from .config import FlowConfig
from .camera import point_validity
from .transfer import compute_flow, compute_flow_grad, validate_inputs, validate_grad_inputs
from .reference import compute_flow_reference, compute_flow_grad_reference
from .errors import ShapeError

logger = logging.getLogger(__name__)


def match_statistics(out_data: torch.Tensor, out_points: torch.Tensor) -> Dict[str, float]:
    """Fraction of defined points and of pixels that received a transfer.

    A matched pixel whose source features are all zero cannot be told apart
    from an unmatched one here; the ratio is a lower bound in that case.
    """
    valid = point_validity(out_points)
    transferred = (out_data != 0).any(dim=-1) & valid
    total = max(valid.numel(), 1)
    return {
        "valid_ratio": float(valid.sum()) / total,
        "match_ratio": float(transferred.sum()) / total,
    }


class FlowEngine:
    """Geometric correspondence transfer engine."""

    def __init__(self, cfg: Optional[FlowConfig] = None):
        self.cfg = (cfg or FlowConfig()).validate()

    def _prepare(self, *tensors: torch.Tensor):
        device = torch.device(self.cfg.device)
        dtype = self.cfg.torch_dtype
        return [torch.as_tensor(t).to(device=device, dtype=dtype) for t in tensors]

    @torch.no_grad()
    def forward(
        self,
        data: torch.Tensor,
        prev_points: torch.Tensor,
        depth: torch.Tensor,
        meta: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Transfer ``data`` onto the current frame.

        Args:
            data: [N, H, W, C] features
            prev_points: [N, H, W, 3] previous frame points
            depth: [N, H, W, 1] current depth
            meta: [N, 1, 1, M] metadata record

        Returns:
            out_data: [N, H, W, C]
            out_points: [N, H, W, 3]
        """
        data, prev_points, depth, meta = self._prepare(data, prev_points, depth, meta)
        validate_inputs(data, prev_points, depth, meta)
        cfg = self.cfg

        if cfg.backend == "reference":
            out_data, out_points = compute_flow_reference(
                data.cpu().numpy(), prev_points.cpu().numpy(), depth.cpu().numpy(), meta.cpu().numpy(),
                cfg.kernel_size, cfg.threshold, cfg.max_distance, cfg.num_workers,
            )
            out_data = torch.from_numpy(out_data).to(data.device)
            out_points = torch.from_numpy(out_points).to(data.device)
        else:
            out_data, out_points = compute_flow(
                data, prev_points, depth, meta, cfg.kernel_size, cfg.threshold, cfg.max_distance
            )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("forward %s: %s", tuple(data.shape), match_statistics(out_data, out_points))
        return out_data, out_points

    @torch.no_grad()
    def backward(
        self,
        prev_points: torch.Tensor,
        curr_points: torch.Tensor,
        grad: torch.Tensor,
    ) -> torch.Tensor:
        """Scatter ``grad`` [N, H, W, C] back through the forward matching."""
        prev_points, curr_points, grad = self._prepare(prev_points, curr_points, grad)
        validate_grad_inputs(prev_points, curr_points, grad)
        cfg = self.cfg

        if cfg.backend == "reference":
            out = compute_flow_grad_reference(
                prev_points.cpu().numpy(), curr_points.cpu().numpy(), grad.cpu().numpy(),
                cfg.kernel_size, cfg.threshold, cfg.max_distance, cfg.num_workers,
            )
            return torch.from_numpy(out).to(grad.device)
        return compute_flow_grad(prev_points, curr_points, grad, cfg.kernel_size, cfg.threshold, cfg.max_distance)

    def warp_sequence(
        self,
        features: torch.Tensor,
        depth: torch.Tensor,
        meta: torch.Tensor,
        progress: bool = False,
    ) -> Tuple[torch.Tensor, torch.Tensor, np.ndarray]:
        """Warp each frame's predecessor features onto it, threading point fields.

        Frame 0 has no predecessor: its warped features are zero and it is
        matched against an all-undefined point field. Frame t >= 1 transfers
        features[t-1] using the points of frame t-1.

        Args:
            features: [T, N, H, W, C]
            depth: [T, N, H, W, 1]
            meta: [T, N, 1, 1, M]
            progress: show a tqdm bar

        Returns:
            warped: [T, N, H, W, C]
            points: [T, N, H, W, 3]
            match_ratio: [T] fraction of pixels receiving a transfer
        """
        if features.dim() != 5 or depth.dim() != 5 or meta.dim() != 5:
            raise ShapeError("features, depth and meta must be 5-dimensional [T, N, ...]")
        if not (features.shape[0] == depth.shape[0] == meta.shape[0]):
            raise ShapeError("features, depth and meta must have the same number of frames")

        T, N, H, W, C = features.shape
        logger.info("Warping %d frames of %dx%d (batch %d, %d channels)", T, H, W, N, C)

        features, = self._prepare(features)
        prev_points = torch.full((N, H, W, 3), float("nan"), device=features.device, dtype=features.dtype)
        prev_data = torch.zeros(N, H, W, C, device=features.device, dtype=features.dtype)

        warped, points, ratios = [], [], []
        frames = tqdm(range(T), desc="Warping") if progress else range(T)
        for t in frames:
            # Trailing ones channel marks the pixels that received a transfer
            flagged = torch.cat([prev_data, torch.ones_like(prev_data[..., :1])], dim=-1)
            out_flagged, out_points = self.forward(flagged, prev_points, depth[t], meta[t])
            out_data, matched = out_flagged[..., :-1], out_flagged[..., -1] > 0
            warped.append(out_data)
            points.append(out_points)
            ratios.append(float(matched.float().mean()))
            prev_data, prev_points = features[t], out_points

        logger.info("Mean match ratio over %d frames: %.3f", T, float(np.mean(ratios)) if ratios else 0.0)
        return torch.stack(warped), torch.stack(points), np.asarray(ratios, dtype=np.float32)
