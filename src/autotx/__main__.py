"""Allow ``python -m autotx``."""

from autotx.app import run

run()
