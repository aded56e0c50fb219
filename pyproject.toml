[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cardauth"
version = "0.6.13"
description = "Smart card login configuration tools: block-structured config files, card event handling and certificate-to-user mapper chains"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "smartcard",
    "pkcs11",
    "pam",
    "authentication",
    "configuration",
    "card-events",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration :: Authentication/Directory",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pkcs11-setup = "cardauth.setup_tool:main"

[tool.hatch.build.targets.wheel]
packages = ["cardauth"]

[tool.pytest.ini_options]
addopts = "-ra"
