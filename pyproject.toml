[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chatcap"
version = "0.1.0"
description = "A small JSON-over-HTTP service with structured logging, request middleware and a log pretty-printer"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "wsgi", "middleware", "structured-logging", "json-logs"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
chatcap = "chatcap.cap:main"
chatcap-logfmt = "chatcap.logfmt:main"

[tool.hatch.build.targets.wheel]
packages = ["chatcap"]

[tool.pytest.ini_options]
addopts = "-ra"
