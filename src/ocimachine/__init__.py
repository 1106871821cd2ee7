"""
ocimachine — Oracle Cloud Infrastructure machine driver.

Creates, starts, stops and removes OCI compute instances behind the
uniform machine-lifecycle interface a machine orchestrator expects.
"""

import os

__version__ = "0.1.0"
__author__ = "ocimachine contributors"

MACHINE_HOME = os.environ.get("OCIMACHINE_HOME", "~/.ocimachine")
