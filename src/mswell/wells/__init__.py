"""Segment networks, well equations and the multisegment well model."""

from .segments import *  # noqa
from .variables import *  # noqa
from .hydraulics import *  # noqa
from .fluids import *  # noqa
from .state import *  # noqa
from .controls import *  # noqa
from .equations import *  # noqa
from .multisegment import *  # noqa
from .base import *  # noqa
