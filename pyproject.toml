[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zbproxy"
version = "3.0rc5"
description = "TCP relay for Minecraft servers with custom MOTD, hostname rewriting, access lists, TLS SNI routing and SOCKS outbound"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "proxy",
    "minecraft",
    "relay",
    "tcp",
    "socks",
    "sni",
    "motd",
    "asyncio",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
zbproxy = "zbproxy.app:main"

[tool.hatch.build.targets.wheel]
packages = ["zbproxy"]

[tool.hatch.build.targets.sdist]
include = [
    "zbproxy",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
