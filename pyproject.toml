[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "torrentlite"
version = "0.1.0"
description = "A small peer-to-peer file sharing system over UDP with a central tracker"
requires-python = ">=3.10"
dependencies = []
keywords = ["p2p", "torrent", "tracker", "udp", "file-sharing"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
torrentlite-tracker = "torrentlite.tracker:main"
torrentlite-node = "torrentlite.node:main"

[tool.hatch.build.targets.wheel]
packages = ["torrentlite"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
