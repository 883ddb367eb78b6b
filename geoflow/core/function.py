"""Autograd binding for the correspondence transfer."""

import torch
import torch.nn as nn

from .transfer import compute_flow, compute_flow_grad, validate_inputs, check_params


class ComputeFlowFunction(torch.autograd.Function):
    """Straight-through gradient: matching is fixed, values flow back to ``data``."""

    @staticmethod
    def forward(ctx, data, prev_points, depth, meta, kernel_size, threshold, max_distance=1000.0):
        validate_inputs(data, prev_points, depth, meta)
        out_data, out_points = compute_flow(
            data, prev_points, depth, meta, kernel_size, threshold, max_distance
        )
        ctx.mark_non_differentiable(out_points)
        ctx.save_for_backward(prev_points, out_points)
        ctx.kernel_size = kernel_size
        ctx.threshold = threshold
        ctx.max_distance = max_distance
        return out_data, out_points

    @staticmethod
    def backward(ctx, grad_data, grad_points):
        prev_points, out_points = ctx.saved_tensors
        grad = None
        if ctx.needs_input_grad[0]:
            grad = compute_flow_grad(
                prev_points, out_points, grad_data.contiguous(),
                ctx.kernel_size, ctx.threshold, ctx.max_distance,
            )
        return grad, None, None, None, None, None, None


def compute_flow_op(data, prev_points, depth, meta, kernel_size: int = 3, threshold: float = 0.01,
                    max_distance: float = 1000.0):
    """Differentiable (w.r.t. ``data``) forward transfer. Returns (out_data, out_points)."""
    return ComputeFlowFunction.apply(data, prev_points, depth, meta, kernel_size, threshold, max_distance)


class ComputeFlow(nn.Module):
    """Layer form of :func:`compute_flow_op`."""

    def __init__(self, kernel_size: int = 3, threshold: float = 0.01, max_distance: float = 1000.0):
        super().__init__()
        check_params(kernel_size, threshold)
        self.kernel_size = kernel_size
        self.threshold = threshold
        self.max_distance = max_distance

    def forward(self, data, prev_points, depth, meta):
        return compute_flow_op(data, prev_points, depth, meta,
                               self.kernel_size, self.threshold, self.max_distance)

    def extra_repr(self) -> str:
        return f"kernel_size={self.kernel_size}, threshold={self.threshold}"
