# sdcarve

Building blocks for analysing raw images of damaged SD cards formatted with
FAT32, as a first step towards recovering the JPEG photos on them.

sdcarve reads a raw disk image and works out what is left of the filesystem
and of the JPEG headers on it.

## Modules

- **`sdcarve.types`** holds the shared data structures. These are the
  enums `FatStatus`, `ContentType`, `ClusterFlag` and `JpegMode`, and the
  dataclasses `PartitionEntry`, `Fat32Geometry`, `FatTables`,
  `ClusterFeature`, `HuffTable`, `ScanConfig`, `McuConfig`, `JpegTemplate`
  and `FeatureFlags`. The module also provides `DiskImage`.
  `DiskImage.open(path)` memory-maps an image file read-only and can be used
  as a context manager. `DiskImage.cluster_data(n)` returns the bytes of data
  cluster `n`, counted from 2. It returns `None` when the cluster lies
  outside the image.
- **`sdcarve.partition`** reads the MBR. `detect_partitions(image)` returns
  the four primary entries, or an empty list when there is no MBR.
  `partition_offset(image, partition_num)` returns the byte offset of
  partition 1–4. With 0 it returns the offset of the first FAT32 partition
  (type 0x0B/0x0C), and failing that the first non-empty one. An image
  without an MBR is treated as a bare partition at offset 0.
- **`sdcarve.fat32`** reads the boot sector and the FATs.
  `parse_boot_sector(data, offset)` reads the geometry from one boot sector.
  `parse_fat32(image, partition_offset)` tries the boot sector first, then
  the backup at sector 6, and finally autodetection.
  `read_fat_tables(image, geometry)` loads both FAT copies. A copy that lies
  outside the image is left as all zeros.
- **`sdcarve.autodetect`** rebuilds a lost geometry.
  `autodetect_geometry(image, partition_offset)` returns an
  `AutodetectResult` with a geometry, a confidence and a validity flag. It
  builds the geometry from FAT signatures, directory-entry runs, and how
  JPEG/PNG/PDF/ZIP headers line up with cluster boundaries.
  `is_valid_dir_entry` checks whether a single 32-byte record looks like a
  directory entry.
- **`sdcarve.fat_merge`** reconciles the two FAT copies.
  `merge_fats(fat, total_clusters)` fills `fat.merged` and `fat.status`
  entry by entry. `classify_entry` classifies a single entry.
  `build_refcount` counts how many valid entries point at each cluster;
  counts above 1 mean the cluster is cross-linked. `bitflip_candidates`
  lists the in-range cluster numbers that a single-bit flip of an entry
  would give.
- **`sdcarve.cluster_map`** classifies clusters.
  `build_cluster_map(disk)` labels each data cluster as empty, JPEG header,
  JPEG scan data, non-JPEG, MP4 header, bad or unknown. The label comes from
  the cluster's entropy, its `FF 00` stuffing and the markers found in it.
  The module also provides the helpers `shannon_entropy` and `count_ff00`.
- **`sdcarve.jpeg_parse`** reads JPEG headers.
  `parse_jpeg_header(data, dht_fallback)` parses SOI through the first SOS
  into a `JpegTemplate`. The template holds the Huffman and quantisation
  tables, the frame size, the MCU layout, the scan parameters and the
  restart interval. With `dht_fallback` set, a damaged DHT table is replaced
  by the matching Annex K table. `build_huff_table` builds decode tables
  from BITS/HUFFVAL. `standard_tables()` returns the ITU-T T.81 Annex K
  tables. `extract_thumbnail` finds an embedded EXIF thumbnail and returns
  `(offset, size)`. `dqt_distance` compares two quantisation tables.
  `inject_dri` inserts a restart-interval segment before SOS.
- **`sdcarve.gap_detect`** flags unusable clusters.
  `is_gap_cluster(cluster_map, cluster)` reports whether a cluster is a bad
  sector or zero-filled.

## Installation

```
pip install .
```

sdcarve needs Python 3.10 or later and has no runtime dependencies.

## Example

```python
from sdcarve.cluster_map import build_cluster_map
from sdcarve.fat32 import parse_fat32, read_fat_tables
from sdcarve.fat_merge import build_refcount, merge_fats
from sdcarve.jpeg_parse import JpegParseError, parse_jpeg_header
from sdcarve.partition import partition_offset
from sdcarve.types import ContentType, DiskImage

with DiskImage.open("card.img") as disk:
    offset = partition_offset(disk.data, 0)
    disk.geo = parse_fat32(disk.data, offset)

    fat = read_fat_tables(disk.data, disk.geo)
    merge_fats(fat, disk.geo.total_clusters)
    refcount = build_refcount(fat, disk.geo.total_clusters)
    print(sum(1 for r in refcount if r > 1), "cross-linked clusters")

    cluster_map = build_cluster_map(disk)
    for index, feature in enumerate(cluster_map):
        if feature.content_type is not ContentType.JPEG_HEADER:
            continue
        try:
            tmpl = parse_jpeg_header(disk.cluster_data(index + 2))
        except JpegParseError:
            continue
        print(index + 2, tmpl.width, tmpl.height, tmpl.mcu_config.blocks_per_mcu)
```

Failures raise exceptions rather than returning status codes.
`PartitionError` is raised for a bad partition number or an empty
partition. `Fat32Error` is raised when no FAT32 geometry can be found.
`JpegParseError` is raised for a header or Huffman table that cannot be used.

## Feature flags

`sdcarve.types.FeatureFlags` holds on/off switches named after the recovery
heuristics; every flag is on by default. `enable_all` and `disable_all` set
them all at once. `set_flag("dht-fallback", False)` sets one flag by its
hyphenated name; an unknown name raises `KeyError`. `FeatureFlags.names()`
lists all the names. The modules in this package do not read these flags.
For example, DHT fallback is controlled by the `dht_fallback` argument of
`parse_jpeg_header`.

## What sdcarve does not do

sdcarve is a library of analysis steps. It has no command-line program. It
does not validate JPEG entropy-coded data and does not follow or reassemble
fragmented files. It does not write recovered photos or reports to disk. It
does not build a library of header templates from the card either. Those
steps are left to the caller.

## Tests

```
pip install .[test]
pytest
```