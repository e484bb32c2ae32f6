[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "calico_net"
version = "0.1.0"
description = "Compute Calico chart values, prepare Calico network configuration and load controller configuration for Calico-networked Kubernetes clusters."
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "calico",
    "kubernetes",
    "networking",
    "cni",
    "helm",
    "chart-values",
    "ipam",
    "vxlan",
    "wireguard",
    "feature-gates",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["calico_net"]

[tool.hatch.build.targets.sdist]
include = [
    "calico_net",
    "tests",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
