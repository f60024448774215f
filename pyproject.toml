[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "etcdlens"
version = "0.1.0"
description = "Library for inspecting Kubernetes objects stored in etcd: storage encoding, bolt database files and etcd range reads."
requires-python = ">=3.10"
keywords = [
    "etcd",
    "kubernetes",
    "boltdb",
    "protobuf",
    "storage",
    "decode",
    "inspection",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "pyyaml",
    "grpcio",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["etcdlens"]

[tool.hatch.build.targets.sdist]
include = [
    "etcdlens",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
