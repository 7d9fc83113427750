"""
IRT - 3PL response model and EAP ability estimation.

Features:
    - 3PL probability and Fisher information
    - Expected-A-Posteriori (EAP) estimate over a fixed theta grid
    - Test information and expected score for a set of items
    - Item parameter sanity checks

Model:
    P(correct | θ) = c + (1 - c) / (1 + exp(-a(θ - b)))
    I(θ) = a² (P - c)² (1 - P) / ((1 - c)² P)
"""

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .models import ItemParams

# Quadrature grid and prior
GRID_MIN = -4.0
GRID_MAX = 4.0
GRID_POINTS = 81
PRIOR_MEAN = 0.0
PRIOR_SD = 1.0

# Reporting range
THETA_MIN = -3.0
THETA_MAX = 3.0

# Accepted parameter ranges
A_RANGE = (0.1, 3.0)
B_RANGE = (-4.0, 4.0)
C_RANGE = (0.0, 0.5)

THETA_GRID = np.linspace(GRID_MIN, GRID_MAX, GRID_POINTS)
_LOG_PRIOR = -0.5 * ((THETA_GRID - PRIOR_MEAN) / PRIOR_SD) ** 2


@dataclass(frozen=True)
class AbilityEstimate:
    """Posterior mean and sd after a number of responses."""
    theta: float
    se: float
    responses: int = 0

    @property
    def reported_theta(self) -> float:
        return clamp_theta(self.theta)


def clamp_theta(theta: float) -> float:
    return max(THETA_MIN, min(THETA_MAX, theta))


# ==================== Response Model ====================

def probability_correct(theta, params: ItemParams):
    """
    3PL probability of a correct answer.

    Works for a scalar theta or a numpy array of thetas.
    """
    logistic = 1.0 / (1.0 + np.exp(-params.a * (np.asarray(theta, dtype=float) - params.b)))
    p = params.c + (1.0 - params.c) * logistic
    if np.ndim(p) == 0:
        return float(p)
    return p


def item_information(theta: float, params: ItemParams) -> float:
    """Fisher information of one item at theta (0 where P is degenerate)."""
    p = probability_correct(theta, params)
    if p <= params.c or p >= 1.0:
        return 0.0
    numerator = params.a ** 2 * (p - params.c) ** 2 * (1.0 - p)
    denominator = (1.0 - params.c) ** 2 * p
    return float(numerator / denominator)


def test_information(theta: float, items: Iterable[ItemParams]) -> float:
    """Sum of item information at theta."""
    return sum(item_information(theta, params) for params in items)


def expected_score(theta: float, items: Sequence[ItemParams]) -> float:
    """Mean probability of a correct answer across items (0 for no items)."""
    if not items:
        return 0.0
    return sum(probability_correct(theta, params) for params in items) / len(items)


# ==================== Estimation ====================

def estimate_ability(responses: Sequence[Tuple[ItemParams, bool]]) -> AbilityEstimate:
    """
    EAP estimate from (item params, correctness) pairs.

    Recomputed from scratch every call. The posterior is accumulated in
    log space on THETA_GRID with a N(PRIOR_MEAN, PRIOR_SD) prior; theta is
    the posterior mean and se the posterior standard deviation. With no
    responses this returns the prior (0, 1).
    """
    if not responses:
        return AbilityEstimate(theta=PRIOR_MEAN, se=PRIOR_SD, responses=0)

    log_post = _LOG_PRIOR.copy()
    for params, correct in responses:
        p = probability_correct(THETA_GRID, params)
        p = np.clip(p, 1e-12, 1.0 - 1e-12)
        log_post += np.log(p) if correct else np.log(1.0 - p)

    weights = np.exp(log_post - log_post.max())
    weights /= weights.sum()

    theta = float(np.dot(weights, THETA_GRID))
    variance = float(np.dot(weights, (THETA_GRID - theta) ** 2))
    return AbilityEstimate(theta=theta, se=float(np.sqrt(max(variance, 0.0))), responses=len(responses))


# ==================== Validation ====================

def validate_item_params(params: ItemParams) -> List[str]:
    """Return a list of problems with the parameters (empty when usable)."""
    problems = []
    if not A_RANGE[0] <= params.a <= A_RANGE[1]:
        problems.append(f"discrimination a={params.a} outside [{A_RANGE[0]}, {A_RANGE[1]}]")
    if not B_RANGE[0] <= params.b <= B_RANGE[1]:
        problems.append(f"difficulty b={params.b} outside [{B_RANGE[0]}, {B_RANGE[1]}]")
    if not C_RANGE[0] <= params.c <= C_RANGE[1]:
        problems.append(f"guessing c={params.c} outside [{C_RANGE[0]}, {C_RANGE[1]}]")
    return problems
