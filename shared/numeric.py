"""
Numeric helpers shared by metrics, scores and budget reports.
"""

import math


def round_half_up(value: float, ndigits: int = 0):
    """
    Round halves away from zero for positive values (2.5 -> 3, 0.125 -> 0.13).

    The builtin round() rounds halves to even, which shifts scores that
    sit exactly on a .5 boundary. Returns an int when ndigits is 0.

    Args:
        value: Number to round
        ndigits: Decimal places to keep

    Returns:
        Rounded int (ndigits == 0) or float
    """
    factor = 10 ** ndigits
    rounded = math.floor(value * factor + 0.5)
    if ndigits == 0:
        return int(rounded)
    return rounded / factor
