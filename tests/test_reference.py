"""Tests for the loop-based reference backend."""

import numpy as np
import pytest
import torch

from geoflow.core import (
    compute_flow,
    compute_flow_grad,
    compute_flow_reference,
    compute_flow_grad_reference,
    ConfigurationError,
    ShapeError,
)


class TestReferenceBackend:
    @pytest.mark.parametrize("kernel_size,threshold", [(0, 0.05), (1, 0.05), (2, 0.03), (3, 1000.0)])
    def test_forward_bit_identical(self, random_inputs, kernel_size, threshold):
        data, prev_points, depth, meta = random_inputs(N=2, H=6, W=7, C=3)

        out_data, out_points = compute_flow(data, prev_points, depth, meta, kernel_size, threshold)
        ref_data, ref_points = compute_flow_reference(
            data.numpy(), prev_points.numpy(), depth.numpy(), meta.numpy(), kernel_size, threshold
        )

        np.testing.assert_array_equal(ref_data, out_data.numpy())
        np.testing.assert_array_equal(ref_points, out_points.numpy())

    def test_backward_agrees(self, random_inputs):
        data, prev_points, depth, meta = random_inputs(N=2, H=6, W=7, C=3)
        _, out_points = compute_flow(data, prev_points, depth, meta, 2, 0.05)
        grad = np.random.default_rng(0).random(data.shape)

        ref = compute_flow_grad_reference(prev_points.numpy(), out_points.numpy(), grad, 2, 0.05)
        out = compute_flow_grad(prev_points, out_points, torch.from_numpy(grad), 2, 0.05)

        np.testing.assert_allclose(ref, out.numpy(), rtol=1e-12, atol=1e-12)

    def test_thread_pool_matches_sequential(self, random_inputs):
        data, prev_points, depth, meta = random_inputs(N=4, H=5, W=6, C=2)
        args = (data.numpy(), prev_points.numpy(), depth.numpy(), meta.numpy(), 1, 0.05)

        seq = compute_flow_reference(*args, num_workers=1)
        par = compute_flow_reference(*args, num_workers=4)

        for a, b in zip(seq, par):
            np.testing.assert_array_equal(a, b)

    def test_rejects_bad_inputs(self, random_inputs):
        data, prev_points, depth, meta = random_inputs()
        with pytest.raises(ConfigurationError):
            compute_flow_reference(data.numpy(), prev_points.numpy(), depth.numpy(), meta.numpy(), -1, 0.1)
        with pytest.raises(ShapeError):
            compute_flow_reference(data.numpy(), prev_points.numpy(), depth.numpy(), meta.numpy()[..., :30], 1, 0.1)