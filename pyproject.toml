[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bigbang"
version = "0.1.0"
description = "Resource store, dependency graph and scenario templates for an xDS control plane"
requires-python = ">=3.10"
keywords = ["envoy", "xds", "control-plane", "mongodb", "dependency-graph", "templates"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Typing :: Typed",
    "Topic :: System :: Networking",
]
dependencies = [
    "jinja2",
    "pymongo",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["bigbang"]

[tool.pytest.ini_options]
addopts = "-ra"
