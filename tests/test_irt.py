"""Tests for core/irt.py"""

import math

import pytest

from core import irt
from core.models import ItemParams

STANDARD = ItemParams(a=1.0, b=0.0, c=0.25)


def test_probability_at_difficulty_is_midpoint_above_guessing():
    assert irt.probability_correct(0.0, STANDARD) == pytest.approx(0.625)
    assert irt.probability_correct(-10.0, STANDARD) == pytest.approx(0.25, abs=1e-3)
    assert irt.probability_correct(10.0, STANDARD) == pytest.approx(1.0, abs=1e-3)


def test_information_matches_closed_form_and_peaks_near_difficulty():
    p = irt.probability_correct(0.5, STANDARD)
    expected = (p - 0.25) ** 2 * (1 - p) / (0.75 ** 2 * p)
    assert irt.item_information(0.5, STANDARD) == pytest.approx(expected)

    at_b = irt.item_information(0.3, STANDARD)
    assert at_b > irt.item_information(-3.0, STANDARD)
    assert at_b > irt.item_information(3.0, STANDARD)


def test_sum_of_item_information():
    items = [STANDARD, ItemParams(a=1.5, b=1.0, c=0.2)]
    total = irt.test_information(0.0, items)
    assert total == pytest.approx(sum(irt.item_information(0.0, p) for p in items))
    assert irt.test_information(0.0, []) == 0


def test_expected_score_is_monotone_in_theta():
    items = [ItemParams(b=-1.0), ItemParams(b=0.0), ItemParams(b=1.5)]
    scores = [irt.expected_score(t, items) for t in (-2.0, -1.0, 0.0, 1.0, 2.0)]
    assert scores == sorted(scores)
    assert irt.expected_score(0.0, []) == 0.0


def test_no_responses_returns_prior():
    estimate = irt.estimate_ability([])
    assert estimate.theta == 0.0
    assert estimate.se == 1.0
    assert estimate.responses == 0


def test_uniformly_correct_responses_raise_theta_and_shrink_se():
    thetas, ses = [], []
    responses = []
    for _ in range(20):
        responses.append((STANDARD, True))
        estimate = irt.estimate_ability(responses)
        thetas.append(estimate.theta)
        ses.append(estimate.se)

    for prev, cur in zip(thetas, thetas[1:]):
        assert cur >= prev - 1e-9
    for prev, cur in zip(ses, ses[1:]):
        assert cur <= prev + 1e-9
    assert thetas[0] > 0


def test_incorrect_answer_lowers_theta():
    estimate = irt.estimate_ability([(STANDARD, False)])
    assert estimate.theta < 0
    assert estimate.se < 1.0


def test_estimate_is_recomputed_from_scratch():
    responses = [(STANDARD, True), (ItemParams(a=1.2, b=1.0, c=0.2), False), (STANDARD, True)]
    first = irt.estimate_ability(responses)
    second = irt.estimate_ability(list(responses))
    assert first == second


def test_reported_theta_is_clamped():
    assert irt.AbilityEstimate(theta=3.7, se=0.2).reported_theta == 3.0
    assert irt.AbilityEstimate(theta=-3.2, se=0.2).reported_theta == -3.0
    assert irt.AbilityEstimate(theta=1.25, se=0.2).reported_theta == 1.25


def test_validate_item_params():
    assert irt.validate_item_params(STANDARD) == []
    problems = irt.validate_item_params(ItemParams(a=0.05, b=5.0, c=0.6))
    assert len(problems) == 3
    assert not math.isnan(irt.item_information(0.0, ItemParams(a=3.0, b=-4.0, c=0.5)))
