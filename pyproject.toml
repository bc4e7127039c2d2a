[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sdcarve"
version = "0.1.0"
description = "FAT32 and JPEG header analysis for recovering photos from damaged SD card images"
requires-python = ">=3.10"
dependencies = []
keywords = ["fat32", "jpeg", "data-recovery", "forensics", "file-carving", "sd-card"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Recovery Tools",
    "Topic :: System :: Filesystems",
    "Topic :: Multimedia :: Graphics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sdcarve"]

[tool.pytest.ini_options]
addopts = "-ra"
