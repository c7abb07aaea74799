"""
This module holds all of the command classes for the controller's main
entrypoint
"""

# Local
from .base import CmdBase
from .run_controller_cmd import RunControllerCmd
