[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tcpwechat"
version = "2.1.0"
description = "A small TCP chat server and console client with group chat, private chat and image transfer over a CRC32-checked packet protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "tcp", "asyncio", "messaging", "crc32", "protocol"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
tcpwechat = "tcpwechat.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["tcpwechat"]

[tool.hatch.build.targets.sdist]
include = ["tcpwechat", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
