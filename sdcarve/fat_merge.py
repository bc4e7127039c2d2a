"""Merging the two FAT copies and reasoning about damaged entries."""

from __future__ import annotations

from sdcarve.types import FatStatus, FatTables

FAT32_MASK = 0x0FFFFFFF
FAT32_EOF_MIN = 0x0FFFFFF8
FAT32_BAD = 0x0FFFFFF7
FAT32_ENTRY_BITS = 28
REFCOUNT_MAX = 255

_USABLE = (FatStatus.FREE, FatStatus.VALID, FatStatus.EOF)


def classify_entry(entry: int, max_cluster: int) -> FatStatus:
    """Classify a FAT32 entry; pointers must lie in 2..max_cluster+1."""
    if entry == 0:
        return FatStatus.FREE
    if entry >= FAT32_EOF_MIN:
        return FatStatus.EOF
    if entry == FAT32_BAD:
        return FatStatus.BAD
    if 2 <= entry <= max_cluster + 1:
        return FatStatus.VALID
    return FatStatus.CORRUPT


def _merge_entry(e1: int, e2: int, max_cluster: int) -> tuple[int, FatStatus]:
    c1 = classify_entry(e1, max_cluster)
    c2 = classify_entry(e2, max_cluster)

    if e1 == e2:
        return e1, c1
    if c1 in _USABLE and c2 is FatStatus.CORRUPT:
        return e1, c1
    if c2 in _USABLE and c1 is FatStatus.CORRUPT:
        return e2, c2
    if e1 == 0 and e2 != 0 and c2 is not FatStatus.CORRUPT:
        return e2, c2
    if e2 == 0 and e1 != 0 and c1 is not FatStatus.CORRUPT:
        return e1, c1
    if c1 is FatStatus.VALID and c2 is FatStatus.VALID:
        return e1, FatStatus.VALID
    return e1, FatStatus.CORRUPT


def merge_fats(fat: FatTables, total_clusters: int) -> None:
    """Fill ``fat.merged`` and ``fat.status`` from the two FAT copies."""
    if len(fat.fat2) != fat.count:
        raise ValueError("FAT copies must have the same number of entries")
    max_cluster = total_clusters + 1
    results = [_merge_entry(e1, e2, max_cluster) for e1, e2 in zip(fat.fat1, fat.fat2)]
    fat.merged = [value for value, _ in results]
    fat.status = [status for _, status in results]


def build_refcount(fat: FatTables, total_clusters: int) -> list[int]:
    """How many valid FAT entries point at each cluster, saturating at 255."""
    refcount = [0] * (total_clusters + 2)
    for index in range(2, fat.count):
        if fat.status[index] is not FatStatus.VALID:
            continue
        target = fat.merged[index]
        if 2 <= target < len(refcount) and refcount[target] < REFCOUNT_MAX:
            refcount[target] += 1
    return refcount


def bitflip_candidates(entry: int, max_cluster: int, max_out: int) -> list[int]:
    """Cluster numbers reachable from ``entry`` by flipping one of its 28 bits."""
    candidates: list[int] = []
    for bit in range(FAT32_ENTRY_BITS):
        if len(candidates) >= max_out:
            break
        flipped = (entry ^ (1 << bit)) & FAT32_MASK
        if 2 <= flipped <= max_cluster + 1:
            candidates.append(flipped)
    return candidates