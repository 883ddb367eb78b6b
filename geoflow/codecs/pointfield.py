"""Point field and warped feature encoding/decoding for storage."""

import numpy as np
from pathlib import Path
from typing import Dict, Any, Union, Optional


class PointFieldCodec:
    """Encode/decode point fields and warped features to/from .npy files.

    Format: Single .npy file containing a dict with:
        - points: [..., H, W, 3] world points, NaN where undefined
        - data: [..., H, W, C] warped features (optional)
        - match_ratio: [T] per-frame match ratio (optional)
        - params: dict of FlowConfig values
        - meta: additional metadata

    Points are never downcast; the NaN sentinel and the distances computed
    from them must survive a round trip.
    """

    VERSION = 1

    @classmethod
    def encode(
        cls,
        points: np.ndarray,
        data: Optional[np.ndarray] = None,
        match_ratio: Optional[np.ndarray] = None,
        params: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None,
        compress: bool = False,
    ) -> Dict[str, Any]:
        """Encode a point field to a dict for saving.

        Args:
            points: [..., 3] point field
            data: [..., C] warped features
            match_ratio: per-frame match ratio
            params: FlowConfig.to_dict()
            meta: additional metadata
            compress: store data as float16 (otherwise its dtype is kept)

        Returns:
            dict ready for np.save
        """
        points = np.asarray(points)
        if points.shape[-1] != 3:
            raise ValueError(f"points must end with 3 channels, got shape {points.shape}")

        encoded = {
            "version": cls.VERSION,
            "points": points if points.dtype == np.float64 else points.astype(np.float32),
        }

        if data is not None:
            data = np.asarray(data)
            encoded["data"] = data.astype(np.float16) if compress else data

        if match_ratio is not None:
            encoded["match_ratio"] = np.asarray(match_ratio, dtype=np.float32)

        if params is not None:
            encoded["params"] = cls._serialize_params(params)

        if meta is not None:
            encoded["meta"] = meta

        return encoded

    @classmethod
    def decode(cls, encoded: Dict[str, Any]) -> Dict[str, Any]:
        """Decode a loaded dict; adds a boolean ``valid`` mask next to ``points``."""
        points = encoded["points"]
        result = {
            "points": points,
            "valid": ~np.isnan(points).any(axis=-1),
        }

        if "data" in encoded:
            data = encoded["data"]
            result["data"] = data.astype(np.float32) if data.dtype == np.float16 else data

        if "match_ratio" in encoded:
            result["match_ratio"] = encoded["match_ratio"]

        if "params" in encoded:
            result["params"] = encoded["params"]

        if "meta" in encoded:
            result["meta"] = encoded["meta"]

        result["version"] = encoded.get("version", 0)

        return result

    @classmethod
    def save(cls, path: Union[str, Path], **kwargs) -> None:
        """Save a point field to .npy file."""
        np.save(path, cls.encode(**kwargs), allow_pickle=True)

    @classmethod
    def load(cls, path: Union[str, Path]) -> Dict[str, Any]:
        """Load a point field from .npy file."""
        return cls.decode(np.load(path, allow_pickle=True).item())

    @staticmethod
    def _serialize_params(params: Dict[str, Any]) -> Dict[str, Any]:
        """FlowConfig values as builtins, so a loaded file does not depend on numpy scalars."""
        return {k: v.tolist() if isinstance(v, (np.ndarray, np.generic)) else v for k, v in params.items()}
