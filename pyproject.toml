[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xvsim"
version = "0.1.0"
description = "A pure-Python model of a small Unix-like teaching kernel: paging, processes, locks, pipes, system calls, packet headers and a shell command parser"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "operating-system",
    "kernel",
    "simulation",
    "paging",
    "scheduler",
    "education",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Education",
    "Topic :: System :: Operating System",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xvsim-wc = "xvsim.wc:main"
xvsim-uthread = "xvsim.uthread:main"

[tool.hatch.build.targets.wheel]
packages = ["xvsim"]

[tool.hatch.build.targets.sdist]
include = ["xvsim", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
