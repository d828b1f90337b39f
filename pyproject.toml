[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appcspec"
version = "0.1.0"
description = "Build, validate and render App Container Images (ACI) and check container environments"
requires-python = ">=3.10"
dependencies = []
keywords = ["aci", "app container", "container image", "tar", "manifest", "validation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Packaging",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ace-validator = "appcspec.ace:main"

[tool.hatch.build.targets.wheel]
packages = ["appcspec"]

[tool.pytest.ini_options]
addopts = "-ra"
