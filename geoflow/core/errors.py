"""Exceptions raised before any per-pixel work starts."""


class ConfigurationError(ValueError):
    """Invalid kernel_size, threshold or backend settings."""


class ShapeError(ValueError):
    """Input tensors disagree on rank, (N, H, W) or channel count."""
