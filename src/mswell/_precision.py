from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = ["get_dtype", "with_precision"]

_mswell_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_mswell_dtype", default=np.float64
)


def get_dtype() -> np.typing.DTypeLike:
    """
    Get the data type of the float arrays allocated by the well model.

    Defaults to float64, since the Jacobian blocks come straight from
    derivative propagation and the local Newton solve relies on them.

    :return: The current data type.
    """
    return _mswell_dtype.get()


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Context manager to temporarily set the data type used for mswell arrays.

    :param dtype: The data type to set within the context.
    """
    token = _mswell_dtype.set(dtype)
    try:
        yield
    finally:
        _mswell_dtype.reset(token)
