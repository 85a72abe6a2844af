[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bramble"
version = "0.1.0"
description = "Query plan execution, response merging and GraphQL formatting for a federated GraphQL gateway"
requires-python = ">=3.10"
dependencies = []
keywords = ["graphql", "federation", "gateway", "query-execution"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bramble"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
