"""
Prawitz Bound (Tier 0 Oracle Formula)

Lower bound on Pr[X > x] for a Rademacher sum X with Var(X) = 1 and
largest coefficient at most a. This is F(a, x, T, q) from Dvorak & Klein,
"Probability that a Rademacher sum exceeds its standard deviation"
(SIAM J. Discrete Math., arXiv:2104.10005), evaluated at T = pi / a and
q = 1/2:

    F = 1/2 - eps - (S1 + S2 + S3)

where S1, S2, S3 integrate the kernel k(u, x, T) against bounds on the
characteristic function of X. Two integrators are provided:

- "lipschitz": midpoint rule with a step count derived from Lipschitz
  constants of the integrands, so the additive error is provably below
  eps. This is the rigorous mode and the default.
- "quad": scipy.integrate.quad. Fast, with an error *estimate* only.
  Useful for exploration, not for certificates.
"""

import functools
from typing import Callable
import numpy as np
from scipy.integrate import quad


PI = np.pi

# The solution of exp(-x^2/2) + cos(x) = 0 with x in [0, pi]
THETA = 1.7780882886686339603

INTEGRATORS = ("lipschitz", "quad")

# Integrators whose error bound is proved, not estimated
RIGOROUS_INTEGRATORS = ("lipschitz",)

# Midpoint evaluations per numpy chunk
_CHUNK = 1 << 20


def normal_char(x):
    """Characteristic function of a standard normal variable."""
    return np.exp(-x * x / 2.0)


def fx_bound(v, a1: float):
    """
    Upper bound on |f_X(v)| given an upper bound a1 on the coefficients.

    This is h(v, a) from the paper; it is only valid for a1 * v < pi.
    """
    av = a1 * np.asarray(v, dtype=np.float64)
    if np.any(av >= PI):
        raise ValueError(f"fx_bound requires a1 * v < pi (got max {np.max(av)})")
    with np.errstate(invalid='ignore'):
        tail = np.power(np.maximum(-np.cos(av), 0.0), 1.0 / a1 ** 2)
    return np.where(av < THETA, normal_char(v), tail)


def difference_bound(v, a1: float):
    """
    Upper bound on |f_X(v) - exp(-v^2/2)|, valid for a1 * v <= pi / 2.

    This is g(v, a) from the paper.
    """
    av = a1 * np.asarray(v, dtype=np.float64)
    if np.any(av > PI / 2.0):
        raise ValueError(f"difference_bound requires a1 * v <= pi/2 (got max {np.max(av)})")
    return normal_char(v) - np.power(np.maximum(np.cos(av), 0.0), 1.0 / a1 ** 2)


def kernel(u, x: float, t: float):
    """k(u, x, T) from the paper, vectorised over u."""
    u = np.asarray(u, dtype=np.float64)
    txu = t * x * u
    with np.errstate(divide='ignore', invalid='ignore'):
        body = (1.0 - u) * np.sin(PI * u + txu) / np.sin(PI * u) + np.sin(txu) / PI
    return np.where(u == 0.0, 1.0 + t * x / PI, np.where(u == 1.0, 0.0, body))


def lipschitz_integrate(
    f: Callable[[np.ndarray], np.ndarray],
    start: float,
    end: float,
    epsilon: float,
    derivative_bound: float,
    max_f_error: float
) -> float:
    """
    Midpoint-rule integral of f over [start, end] with additive error < epsilon.

    Args:
        f: Vectorised integrand
        start, end: Integration limits
        epsilon: Allowed additive error
        derivative_bound: Bound B on |f'| over the interval
        max_f_error: Bound C on the error of each evaluation of f

    Returns:
        The midpoint sum. The true integral lies within epsilon of it.
    """
    width = end - start
    slack = 4.0 * (epsilon - max_f_error * width)
    if slack <= 0:
        raise ValueError("Evaluation error alone exceeds the integration budget")
    num_steps = int(2 + derivative_bound * width ** 2 / slack)
    error = derivative_bound * width ** 2 / (4.0 * num_steps) + width * max_f_error
    if not error < epsilon:
        raise ValueError(f"Integration error {error} not below {epsilon}")

    total = 0.0
    for chunk_start in range(0, num_steps, _CHUNK):
        k = np.arange(chunk_start, min(chunk_start + _CHUNK, num_steps), dtype=np.float64)
        u = start + (2.0 * k + 1.0) * width / (2.0 * num_steps)
        total += float(np.sum(f(u)))
    return width * total / num_steps


def _f_lipschitz(a1: float, x: float, t: float, q: float, epsilon: float) -> float:
    tx = abs(t * x)
    # Lipschitz constants of the three integrands, from the appendix
    # "Numeric integration in our proofs" of arXiv:2006.16834.
    bound1 = t * (1 + 2 * tx / PI) + 1.1 * (tx ** 2 / (2 * PI) + PI)
    bound2 = t * (1 + 2 * tx / PI) + tx ** 2 / (2 * PI) + PI
    bound3 = 2 * (t / 3) * (1 + 2 * tx / PI) + tx ** 2 / (2 * PI) + PI
    abs_error = 2.0 ** -40 * (2 + tx)

    s1 = lipschitz_integrate(lambda u: np.abs(kernel(u, x, t)) * difference_bound(u * t, a1),
                             0.0, q, epsilon / 4, bound1, abs_error)
    s2 = lipschitz_integrate(lambda u: np.abs(kernel(u, x, t)) * fx_bound(u * t, a1),
                             q, 1.0, epsilon / 4, bound2, abs_error)
    s3 = lipschitz_integrate(lambda u: kernel(u, x, t) * normal_char(u * t),
                             0.0, q, epsilon / 4, bound3, abs_error)
    return 0.5 - epsilon - (s1 + s2 + s3)


def _quad_pieces(f: Callable[[float], float], start: float, end: float, breakpoints=()) -> tuple:
    """scipy quad over [start, end], split at interior breakpoints."""
    cuts = sorted([start, end] + [b for b in breakpoints if start < b < end])
    value = 0.0
    error = 0.0
    for lo, hi in zip(cuts, cuts[1:]):
        piece, piece_error = quad(f, lo, hi)
        value += piece
        error += piece_error
    return value, error


def _f_quad(a1: float, x: float, t: float, q: float, epsilon: float) -> float:
    s1 = _quad_pieces(lambda u: float(abs(kernel(u, x, t)) * difference_bound(u * t, a1)), 0.0, q)
    s2 = _quad_pieces(lambda u: float(abs(kernel(u, x, t)) * fx_bound(u * t, a1)), q, 1.0,
                      breakpoints=(THETA / (a1 * t),))
    s3 = _quad_pieces(lambda u: float(kernel(u, x, t) * normal_char(u * t)), 0.0, q)

    if s1[1] + s2[1] + s3[1] >= epsilon / 10:
        raise ValueError("scipy quad error estimate exceeds the budget")
    return 0.5 - epsilon - (s1[0] + s2[0] + s3[0])


def prawitz_f(a1: float, x: float, t: float, q: float, epsilon: float,
              integrator: str = "lipschitz") -> float:
    """F(a1, x, T, q) minus the integration error allowance."""
    if integrator == "lipschitz":
        return _f_lipschitz(a1, x, t, q, epsilon)
    elif integrator == "quad":
        return _f_quad(a1, x, t, q, epsilon)
    raise ValueError(f"Unknown integrator: {integrator!r} (expected one of {INTEGRATORS})")


@functools.lru_cache(maxsize=None)
def prawitz_bound(a: float, x: float, epsilon: float = 1e-3,
                  integrator: str = "lipschitz", min_coefficient: float = 0.1) -> float:
    """
    Lower bound on Pr[X > x] for a normalised Rademacher sum X whose
    largest coefficient is at most a.

    Coefficients below min_coefficient are raised to it: the bound holds
    for every sum with largest coefficient <= a, so weakening a is allowed
    and keeps the integrals cheap.
    """
    a = max(float(a), min_coefficient)
    return max(prawitz_f(a, float(x), PI / a, 0.5, epsilon, integrator), 0.0)
