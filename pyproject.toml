[build-system]
requires = ["setuptools>=68", "wheel"]
build-backend = "setuptools.build_meta"

[project]
name = "redismq"
version = "0.1.0"
description = "A priority message queue on Redis lists, with consumer threads, a dead-letter queue and metrics."
requires-python = ">=3.10"
dependencies = [
    "redis>=5.0",
]
keywords = ["redis", "message queue", "priority queue", "dead letter", "consumer"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
redismq-examples = "redismq.examples:main"

[tool.setuptools.packages.find]
include = ["redismq*"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
