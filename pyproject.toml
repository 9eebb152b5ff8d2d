[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "horcrux"
version = "3.0.0"
description = "Configuration, cosigner interfaces, health tracking and nonce caching for a threshold remote signer"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["threshold", "signer", "cosigner", "validator", "ed25519", "nonce"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
horcrux = "horcrux.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["horcrux"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
