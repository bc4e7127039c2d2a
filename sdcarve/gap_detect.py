"""Recognise clusters that cannot hold file data."""

from __future__ import annotations

from typing import Sequence

from sdcarve.types import ClusterFeature, ClusterFlag, ContentType


def is_gap_cluster(cluster_map: Sequence[ClusterFeature], cluster: int) -> bool:
    """Whether a cluster is a bad sector or zero-filled empty space."""
    index = cluster - 2 if cluster >= 2 else 0
    if index >= len(cluster_map):
        return False
    feature = cluster_map[index]
    if feature.content_type is ContentType.BAD_SECTOR:
        return True
    return feature.content_type is ContentType.EMPTY and bool(
        feature.flags & ClusterFlag.IS_ZERO
    )