[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "c139link"
version = "0.1.0"
description = "Model of the Namco C139 serial interface controller with a TCP ring link between cabinets"
requires-python = ">=3.10"
dependencies = []
keywords = ["emulation", "namco", "c139", "serial", "link", "arcade"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["c139link"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
