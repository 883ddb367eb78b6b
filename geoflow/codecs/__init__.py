"""geoflow codecs: point field storage."""

from .pointfield import PointFieldCodec

__all__ = ["PointFieldCodec"]
