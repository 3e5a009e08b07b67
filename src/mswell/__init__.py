"""
*MSWELL*

Multisegment well model for black-oil reservoir simulation.
"""

from ._precision import *  # noqa
from .ad import *  # noqa
from .config import *  # noqa
from .constants import *  # noqa
from .errors import *  # noqa
from .types import *  # noqa
from .pvt import *  # noqa
from .reservoir import *  # noqa
from .rates import *  # noqa
from .wells import *  # noqa
