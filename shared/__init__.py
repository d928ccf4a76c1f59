"""Shared kernel: domain model, ports, adapters and utilities of the scheduling core"""

__version__ = "0.1.0"

from . import utils
from . import domain
