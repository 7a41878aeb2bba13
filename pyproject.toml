[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "visionary"
version = "0.1.0"
description = "TCP/UDP transports, interface-bound broadcast links and AutoIP discovery for Visionary 3D cameras"
requires-python = ">=3.10"
dependencies = []
keywords = ["3d camera", "autoip", "device discovery", "udp broadcast", "tcp", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["visionary"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
