import sys
import os

# Ensure the repo root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest

from patterns import load_pattern_table
from protocol import EnvironmentInfo, FailureContext


def make_context(stderr="", command="./script.sh", exit_code=1, **kwargs):
    """FailureContext with fixed defaults (fixed timestamp, so equal inputs compare equal)."""
    kwargs.setdefault("cwd", "/work/project")
    kwargs.setdefault("history", ("cd /work/project", "ls"))
    kwargs.setdefault("environment", EnvironmentInfo(os="Linux 6.8.0", shell="bash"))
    kwargs.setdefault("timestamp", 1700000000.0)
    return FailureContext(command=command, exit_code=exit_code, stderr=stderr, **kwargs)


@pytest.fixture(scope="session")
def table():
    return load_pattern_table()
