"""Fluid property evaluation."""

from .core import *  # noqa
from .tables import *  # noqa
