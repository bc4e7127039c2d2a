"""Partition, FAT32, cluster and JPEG header analysis of raw SD card images."""

__version__ = "0.1.0"