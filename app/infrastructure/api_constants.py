"""
Overpass API query constants.

This module contains the Overpass QL templates and related constants.
Centralizing these values makes it easy to change the query shape or tag key.
"""
from typing import Iterable

from app.domain.models import BoundingBox


class OverpassQueries:
    """Overpass QL query templates."""

    LANDUSE_TAG = "landuse"

    # Ways tagged with any of the land-use values, inline node geometry
    LANDUSE_WAYS = (
        "[out:json][timeout:{timeout}];"
        'way["{tag}"~"{values}"]({bbox});'
        "out body geom;"
    )

    @staticmethod
    def tag_alternation(values: Iterable[str]) -> str:
        """Sorted ``a|b|c`` alternation used both in queries and cache keys."""
        return "|".join(sorted(set(values)))

    @classmethod
    def landuse_query(
        cls,
        bbox: BoundingBox,
        values: Iterable[str],
        timeout: int = 30,
    ) -> str:
        """
        Build the land-use query for a bounding box.

        Args:
            bbox: Query extent
            values: landuse tag values to match
            timeout: Server-side timeout in seconds

        Returns:
            Overpass QL query string
        """
        return cls.LANDUSE_WAYS.format(
            timeout=timeout,
            tag=cls.LANDUSE_TAG,
            values=cls.tag_alternation(values),
            bbox=bbox.to_overpass(),
        )


# API Configuration Constants
class APIConstants:
    """General API configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"
    USER_AGENT = "land-use-allocation/1.0"

    # Query parameter carrying the Overpass QL
    QUERY_PARAM = "data"
