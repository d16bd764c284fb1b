[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cellonet"
version = "0.1.0"
description = "Resource pooling, pool metrics and ENI device-plugin logic for container networking agents"
requires-python = ">=3.10"
dependencies = []
keywords = ["networking", "eni", "resource-pool", "kubernetes", "device-plugin", "metrics"]
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
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cellonet"]

[tool.pytest.ini_options]
addopts = "-ra"
