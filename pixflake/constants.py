"""Names and defaults shared across pixflake."""

import os
import platform
import sys

MANIFEST_FILENAME = "flake.py"

# Directory entry point of a base package source, and the callable in it.
PACKAGE_SOURCE_FILENAME = "default.py"
PACKAGE_SET_FACTORY = "make_package_set"

# Input whose package source backs the default package collection.
BASE_PACKAGES_INPUT = "nixpkgs"

SELF_KEY = "self"

SYSTEM_ENV_VAR = "PIXFLAKE_SYSTEM"

_MACHINES = {"amd64": "x86_64", "arm64": "aarch64"}


def host_system() -> str:
    """System identifier of the running interpreter, e.g. ``x86_64-linux``."""
    machine = platform.machine().lower()
    machine = _MACHINES.get(machine, machine)
    kernel = "darwin" if sys.platform == "darwin" else sys.platform.rstrip("0123456789")
    return f"{machine}-{kernel}"


def default_system() -> str:
    return os.environ.get(SYSTEM_ENV_VAR) or host_system()
