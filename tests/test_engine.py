"""Tests for FlowEngine."""

import numpy as np
import pytest
import torch

from geoflow.core import FlowConfig, FlowEngine, ConfigurationError, ShapeError, match_statistics


class TestFlowEngine:
    @pytest.fixture
    def engine(self):
        return FlowEngine(FlowConfig(kernel_size=2, threshold=0.05, dtype="float64"))

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            FlowEngine(FlowConfig(kernel_size=-2))

    def test_forward_shape(self, engine, random_inputs):
        data, prev_points, depth, meta = random_inputs()
        out_data, out_points = engine.forward(data, prev_points, depth, meta)

        assert out_data.shape == data.shape
        assert out_points.shape == prev_points.shape
        assert out_data.dtype == torch.float64

    def test_forward_casts_to_config_dtype(self, random_inputs):
        data, prev_points, depth, meta = random_inputs()
        engine = FlowEngine(FlowConfig(kernel_size=1, threshold=0.05))
        out_data, _ = engine.forward(data, prev_points, depth, meta)
        assert out_data.dtype == torch.float32

    def test_backends_agree(self, random_inputs):
        data, prev_points, depth, meta = random_inputs(N=3, H=5, W=6)
        torch_engine = FlowEngine(FlowConfig(kernel_size=1, threshold=0.05, dtype="float64"))
        ref_engine = FlowEngine(FlowConfig(kernel_size=1, threshold=0.05, dtype="float64",
                                           backend="reference", num_workers=2))

        a_data, a_points = torch_engine.forward(data, prev_points, depth, meta)
        b_data, b_points = ref_engine.forward(data, prev_points, depth, meta)
        np.testing.assert_array_equal(a_data.numpy(), b_data.numpy())
        np.testing.assert_array_equal(a_points.numpy(), b_points.numpy())

        grad = torch.rand_like(data)
        a_grad = torch_engine.backward(prev_points, a_points, grad)
        b_grad = ref_engine.backward(prev_points, b_points, grad)
        assert torch.allclose(a_grad, b_grad)

    def test_shape_mismatch(self, engine, random_inputs):
        data, prev_points, depth, meta = random_inputs()
        with pytest.raises(ShapeError):
            engine.forward(data, prev_points, depth[:, :, :-1], meta)
        with pytest.raises(ShapeError):
            engine.backward(prev_points, prev_points[..., :2], data)

    def test_match_statistics(self, identity_meta):
        out_points = torch.zeros(1, 2, 2, 3)
        out_points[0, 0, 0] = float("nan")
        out_data = torch.zeros(1, 2, 2, 1)
        out_data[0, 1, 1] = 1.0

        stats = match_statistics(out_data, out_points)

        assert stats["valid_ratio"] == pytest.approx(0.75)
        assert stats["match_ratio"] == pytest.approx(0.25)


class TestWarpSequence:
    @pytest.fixture
    def static_sequence(self, identity_meta):
        T, N, H, W, C = 3, 2, 4, 5, 3
        features = torch.rand(T, N, H, W, C, dtype=torch.float64) + 0.5
        depth = torch.ones(T, N, H, W, 1, dtype=torch.float64)
        meta = identity_meta(N).unsqueeze(0).expand(T, -1, -1, -1, -1)
        return features, depth, meta

    def test_static_scene_copies_previous_frame(self, static_sequence):
        features, depth, meta = static_sequence
        engine = FlowEngine(FlowConfig(kernel_size=1, threshold=0.5, dtype="float64"))

        warped, points, ratios = engine.warp_sequence(features, depth, meta)

        assert warped.shape == features.shape
        assert points.shape == features.shape[:-1] + (3,)
        assert (warped[0] == 0).all()
        assert torch.equal(warped[1], features[0])
        assert torch.equal(warped[2], features[1])
        assert ratios.tolist() == pytest.approx([0.0, 1.0, 1.0])

    @pytest.mark.parametrize("backend", ["torch", "reference"])
    def test_match_ratio_counts_zero_features(self, static_sequence, backend):
        features, depth, meta = static_sequence
        features = features.clone()
        features[0, :, :2] = 0.0
        engine = FlowEngine(FlowConfig(kernel_size=1, threshold=0.5, dtype="float64", backend=backend))

        warped, _, ratios = engine.warp_sequence(features, depth, meta)

        assert (warped[1, :, :2] == 0).all()
        assert ratios.tolist() == pytest.approx([0.0, 1.0, 1.0])

    def test_progress_bar(self, static_sequence):
        features, depth, meta = static_sequence
        engine = FlowEngine(FlowConfig(kernel_size=0, threshold=0.5, dtype="float64"))
        warped, _, _ = engine.warp_sequence(features, depth, meta, progress=True)
        assert warped.shape == features.shape

    def test_rejects_mismatched_lengths(self, static_sequence):
        features, depth, meta = static_sequence
        engine = FlowEngine()
        with pytest.raises(ShapeError):
            engine.warp_sequence(features, depth[:2], meta)
        with pytest.raises(ShapeError):
            engine.warp_sequence(features[0], depth, meta)
