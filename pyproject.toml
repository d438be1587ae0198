[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pgstream"
version = "0.1.0"
description = "Configuration loading, partition maintenance, metrics and stream batching for a Postgres event stream"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["postgres", "events", "partitioning", "metrics", "prometheus", "configuration", "asyncio"]
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
    "Topic :: Database",
    "Framework :: AsyncIO",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["pgstream"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
