[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stakeledger"
version = "0.1.0"
description = "Height-aware SQLite storage for proof-of-stake chain data: validators, delegations, slashing, mint and token prices"
requires-python = ">=3.10"
dependencies = []
keywords = ["staking", "validators", "delegations", "proof-of-stake", "indexer", "sqlite"]
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
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["stakeledger"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
