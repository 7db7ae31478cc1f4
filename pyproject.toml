[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dillnet"
version = "0.1.0"
description = "Deadline-driven network sockets: TCP, suffix message framing, TLS and SOCKS5, plus an ordered red-black tree."
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "sockets", "socks5", "tls", "framing", "deadline", "red-black tree"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dillnet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
