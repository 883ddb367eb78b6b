"""Window search for the nearest previously observed 3D point."""

from dataclasses import dataclass

import torch

from .camera import point_validity


@dataclass
class MatchResult:
    """Per-pixel outcome of one window search.

    index holds the flat source pixel ``n*H*W + y*W + x`` and is -1 where
    ``matched`` is False. distance is the best distance seen, or the initial
    running minimum when no valid neighbour was in the window.
    """
    index: torch.Tensor  # [N, H, W] long
    matched: torch.Tensor  # [N, H, W] bool
    distance: torch.Tensor  # [N, H, W]

    @property
    def source_xy(self):
        """Matched source (x, y) per pixel, (-1, -1) where unmatched."""
        W = self.index.shape[2]
        HW = self.index.shape[1] * W
        pix = self.index.remainder(HW)
        x = torch.where(self.matched, pix.remainder(W), torch.full_like(pix, -1))
        y = torch.where(self.matched, pix.div(W, rounding_mode="floor"), torch.full_like(pix, -1))
        return x, y


def float32_threshold(threshold: float) -> float:
    """Threshold as held in single precision, whatever the input dtype."""
    return float(torch.tensor(threshold, dtype=torch.float32))


def match_points(
    query: torch.Tensor,
    query_valid: torch.Tensor,
    prev_points: torch.Tensor,
    kernel_size: int,
    threshold: float,
    max_distance: float = 1000.0,
) -> MatchResult:
    """Match every query point to the closest valid point of ``prev_points``.

    The window [x-k, x+k] x [y-k, y+k] is clipped to the image and scanned
    with x as the outer and y as the inner loop, both ascending. The running
    minimum only moves on a strict improvement, so the first neighbour in
    scan order wins ties. A match is kept when its distance is below
    ``threshold`` rounded to float32.

    Args:
        query: [N, H, W, 3] points of the current frame
        query_valid: [N, H, W] bool, False for undefined query points
        prev_points: [N, H, W, 3] previous frame points, NaN where undefined
        kernel_size: window half-width, >= 0
        threshold: exclusive distance bound
        max_distance: initial running minimum

    Returns:
        MatchResult
    """
    N, H, W, _ = query.shape
    device, dtype = query.device, query.dtype
    k = kernel_size
    threshold = float32_threshold(threshold)

    prev_valid = point_validity(prev_points)
    padded = torch.zeros(N, H + 2 * k, W + 2 * k, 3, device=device, dtype=dtype)
    padded_valid = torch.zeros(N, H + 2 * k, W + 2 * k, device=device, dtype=torch.bool)
    padded[:, k:k + H, k:k + W] = torch.nan_to_num(prev_points.to(device=device, dtype=dtype))
    padded_valid[:, k:k + H, k:k + W] = prev_valid.to(device)

    q = torch.nan_to_num(query)
    ys = torch.arange(H, device=device).view(1, H, 1)
    xs = torch.arange(W, device=device).view(1, 1, W)

    best = torch.full((N, H, W), max_distance, device=device, dtype=dtype)
    best_x = torch.full((N, H, W), -1, device=device, dtype=torch.long)
    best_y = torch.full((N, H, W), -1, device=device, dtype=torch.long)

    for dx in range(-k, k + 1):
        for dy in range(-k, k + 1):
            nb = padded[:, k + dy:k + dy + H, k + dx:k + dx + W]
            nb_valid = padded_valid[:, k + dy:k + dy + H, k + dx:k + dx + W]
            ex = q[..., 0] - nb[..., 0]
            ey = q[..., 1] - nb[..., 1]
            ez = q[..., 2] - nb[..., 2]
            dis = torch.sqrt(ex * ex + ey * ey + ez * ez)

            better = nb_valid & (dis < best)
            best = torch.where(better, dis, best)
            best_x = torch.where(better, xs + dx, best_x)
            best_y = torch.where(better, ys + dy, best_y)

    matched = query_valid & (best_x >= 0) & (best < threshold)
    n = torch.arange(N, device=device).view(N, 1, 1)
    index = torch.where(matched, n * H * W + best_y * W + best_x, torch.full_like(best_x, -1))
    return MatchResult(index=index, matched=matched, distance=best)
