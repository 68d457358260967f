[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "coreresolver"
version = "0.1.2"
description = "A plugin-chain DNS server configured with a Corefile"
requires-python = ">=3.10"
dependencies = [
    "cachetools",
]
keywords = ["dns", "resolver", "forwarder", "corefile", "dns-over-tls", "cache"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
coreresolver = "coreresolver.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["coreresolver"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
