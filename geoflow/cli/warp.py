"""CLI for warping an RGB-D feature sequence by 3D correspondence."""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
import torch

from geoflow import FlowConfig, FlowEngine, ConfigurationError, ShapeError
from geoflow.codecs import PointFieldCodec

logger = logging.getLogger("geoflow.cli")


def load_inputs(path: Path):
    """Load features [T, N, H, W, C], depth [T, N, H, W, 1], meta [T, N, 1, 1, M] from .npz.

    The batch axis may be omitted: features [T, H, W, C], depth [T, H, W] or
    [T, H, W, 1], meta [T, M]. Meta may also be given as [T, N, M].
    """
    with np.load(path) as f:
        features, depth, meta = f["features"], f["depth"], f["meta"]

    if features.ndim == 4:
        features = features[:, None]
    if depth.ndim == 3:
        depth = depth[:, None, ..., None]
    elif depth.ndim == 4:
        depth = depth[:, None] if depth.shape[-1] == 1 else depth[..., None]
    if meta.ndim == 2:
        meta = meta[:, None, None, None, :]
    elif meta.ndim == 3:
        meta = meta[:, :, None, None, :]
    return torch.from_numpy(features), torch.from_numpy(depth), torch.from_numpy(meta)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Warp features along an RGB-D sequence by 3D nearest-neighbour matching")
    parser.add_argument("input", type=Path, help="Input .npz with features, depth and meta arrays")
    parser.add_argument("-o", "--output", type=Path, required=True, help="Output .npy point field file")
    parser.add_argument("-c", "--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("-k", "--kernel-size", type=int, default=None, help="Search window half-width")
    parser.add_argument("-t", "--threshold", type=float, default=None, help="Match distance threshold")
    parser.add_argument("--backend", type=str, default=None, choices=["torch", "reference"], help="Backend to use")
    parser.add_argument("-w", "--workers", type=int, default=None, help="Reference backend threads")
    parser.add_argument("--device", type=str, default=None, choices=["cpu", "cuda"], help="Device to use")
    parser.add_argument("--compress", action="store_true", help="Store warped features as float16")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = FlowConfig.from_yaml(args.config) if args.config else FlowConfig()
    overrides = {
        "kernel_size": args.kernel_size,
        "threshold": args.threshold,
        "backend": args.backend,
        "num_workers": args.workers,
        "device": args.device,
    }
    cfg = FlowConfig.from_dict({**cfg.to_dict(), **{k: v for k, v in overrides.items() if v is not None}})

    try:
        engine = FlowEngine(cfg)
        features, depth, meta = load_inputs(args.input)
        warped, points, ratios = engine.warp_sequence(features, depth, meta, progress=not args.no_progress)
    except KeyError as e:
        logger.error("%s is missing array %s", args.input, e)
        return 2
    except (ConfigurationError, ShapeError) as e:
        logger.error("%s", e)
        return 2

    args.output.parent.mkdir(parents=True, exist_ok=True)
    PointFieldCodec.save(
        args.output,
        points=points.cpu().numpy(),
        data=warped.cpu().numpy(),
        match_ratio=ratios,
        params=cfg.to_dict(),
        meta={"input": str(args.input)},
        compress=args.compress,
    )

    print(f"\nWarping complete:")
    print(f"  Frames: {len(ratios)}")
    print(f"  Mean match ratio: {float(np.mean(ratios)) if len(ratios) else 0.0:.3f}")
    print(f"  Output: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
