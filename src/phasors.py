import cmath
import math

import numpy as np

MIN_VOLTAGE_SAFETY = 1e-6
DIVISION_FLOOR = 1e-12

# 120 degree operator, used to restore phase displacement of solves run at 0 deg
A_OPERATOR = complex(-0.5, math.sqrt(3) / 2)


def polar(magnitude: float, angle_deg: float = 0.0) -> complex:
    return cmath.rect(magnitude, math.radians(angle_deg))


def magnitude(z) -> float:
    return float(abs(z))


def angle_deg(z) -> float:
    return math.degrees(cmath.phase(z))


def conj(z):
    return np.conj(z)


def safe_divide(num, den, floor: float = DIVISION_FLOOR):
    """
    Complex division that keeps a near-zero denominator away from zero.
    The denominator keeps its phase and its magnitude is raised to ``floor``.
    Works element-wise on numpy arrays.
    """
    den = np.asarray(den, dtype=complex)
    mag = np.abs(den)
    scale = np.where(mag < floor, floor / np.where(mag > 0, mag, 1.0), 1.0)
    den = np.where(mag == 0, floor, den * scale)
    return np.asarray(num, dtype=complex) / den


def current_from_power(s, v, floor: float = MIN_VOLTAGE_SAFETY):
    """
    Injection current I = conj(S / V) for constant-power nodes.

    Parameters:
      - s: complex power per phase (VA), load positive
      - v: node phase voltage (V)
      - floor: safety floor on |V| guarding collapsed voltages

    Returns:
      - complex current (A), same shape as the inputs
    """
    return np.conj(safe_divide(s, v, floor))


def neutral_current(i_a, i_b, i_c):
    """Neutral current of three phase currents solved on a shared 0 deg reference."""
    return np.abs(i_a + A_OPERATOR ** 2 * i_b + A_OPERATOR * i_c)
