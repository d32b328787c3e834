"""
Command-line interface (`proxy-upgrade`).

The console script points at :data:`proxy_upgrade.cli.main.app`; from Python
use :func:`proxy_upgrade.cli.main.main`, which returns the exit status.
"""

from .main import app

__all__ = ["app"]
