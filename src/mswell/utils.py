import numba
import numpy as np


__all__ = ["limited_step", "renormalize_fractions"]


@numba.njit(cache=True)
def limited_step(step: float, limit: float) -> float:
    """
    Limit the magnitude of a Newton step while keeping its sign.

    :param step: Unlimited step.
    :param limit: Largest allowed magnitude. Non-positive means unlimited.
    :return: The limited step.
    """
    if limit <= 0.0:
        return step
    if step > 0.0:
        return min(step, limit)
    return -min(-step, limit)


@numba.njit(cache=True)
def renormalize_fractions(
    fractions: np.ndarray, positions: np.ndarray, min_denominator: float
) -> bool:
    """
    Remove negative phase fractions by redistributing them over the others (in-place).

    Each negative fraction (checked in the order given by `positions`) is set
    to zero and the remaining fractions are divided by `1 - f_negative`, so the
    fractions keep summing to one. This is done exactly once per call.

    :param fractions: Phase fractions summing to one.
    :param positions: Order in which phases are checked, e.g. water, gas, oil.
    :param min_denominator: Smallest accepted `1 - f_negative`.
    :return: True if any fraction had to be corrected.
    """
    corrected = False
    for i in range(positions.shape[0]):
        pos = positions[i]
        value = fractions[pos]
        if value < 0.0:
            denominator = max(1.0 - value, min_denominator)
            for j in range(fractions.shape[0]):
                if j != pos:
                    fractions[j] = fractions[j] / denominator
            fractions[pos] = 0.0
            corrected = True
    return corrected
