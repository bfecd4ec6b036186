[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "diskpool"
version = "0.1.0"
description = "Local disk, LVM and bcache management for node-level storage pools"
requires-python = ">=3.10"
dependencies = []
keywords = ["lvm", "bcache", "disk", "storage", "volume-group", "lsblk"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["diskpool"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
