[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "msgpattern"
version = "0.1.0"
description = "A TCP message-pattern RPC server speaking length-prefixed JSON frames"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "tcp", "microservices", "message-pattern", "json"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
msgpattern-example = "msgpattern.example:main"

[tool.hatch.build.targets.wheel]
packages = ["msgpattern"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
