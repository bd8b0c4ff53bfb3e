"""
Rampart command line.

Usage:
    rampart serve module:handler [--config rampart.yaml] [--workers 4]
    rampart token
    rampart version
"""

from .. import __version__

__cli_name__ = "rampart"
