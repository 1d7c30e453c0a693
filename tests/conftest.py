import os
import sys


def pytest_configure():
    # Make the flat `core`/`transports` packages and `tests.fakes` importable
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)
