import pytest
from pydantic import ValidationError

from brandtrust.community import (
    RatingOutOfRangeError,
    build_outlook,
    outlook_confidence,
    outlook_from_ratings,
    shrink,
    summarize_ratings,
)
from brandtrust.models import CommunityRatingRow, RatingHistogram, UserPreferences
from brandtrust.personalized import PersonalizedScoreComposer, normalize_weights
from brandtrust.taxonomy import CATEGORIES, Category

SCORES = {
    Category.LABOR: 30.0,
    Category.ENVIRONMENT: 80.0,
    Category.POLITICS: 50.0,
    Category.SOCIAL: 70.0,
}


@pytest.fixture
def composer():
    return PersonalizedScoreComposer()


def test_zero_weights_fall_back_to_equal_baseline(composer):
    result = composer.compose(SCORES, UserPreferences(weights={"labor": 0, "environment": 0}))
    assert result.label == "baseline"
    assert not result.is_personalized
    assert result.overall == pytest.approx(57.5)
    assert all(item.weight == pytest.approx(0.25) for item in result.breakdown)


def test_missing_preferences_is_baseline(composer):
    result = composer.compose(SCORES, None)
    assert result.label == "baseline"
    assert result.overall == pytest.approx(57.5)


def test_weights_are_normalized(composer):
    prefs = UserPreferences(weights={"labor": 80, "environment": 20, "politics": 0, "social": 0})
    result = composer.compose(SCORES, prefs)
    assert result.label == "personalized"
    assert result.overall == pytest.approx(30 * 0.8 + 80 * 0.2)
    weights = {item.category: item.weight for item in result.breakdown}
    assert sum(weights.values()) == pytest.approx(1.0)


def test_negative_weights_are_ignored():
    weights, personalized = normalize_weights({Category.LABOR: -5, Category.SOCIAL: 5})
    assert personalized
    assert weights[Category.SOCIAL] == 1.0
    assert weights[Category.LABOR] == 0.0


def test_breakdown_sorted_by_contribution_with_direction(composer):
    result = composer.compose(SCORES, None)
    contributions = [abs(item.contribution) for item in result.breakdown]
    assert contributions == sorted(contributions, reverse=True)
    impacts = {item.category: item.impact for item in result.breakdown}
    assert impacts[Category.ENVIRONMENT] == "positive"
    assert impacts[Category.LABOR] == "negative"
    assert impacts[Category.POLITICS] == "neutral"


def test_dealbreaker_flags_without_cap(composer):
    prefs = UserPreferences(weights={"labor": 1, "environment": 1}, dealbreakers={"labor": 40})
    result = composer.compose(SCORES, prefs)
    assert len(result.dealbreakers) == 1
    flag = result.dealbreakers[0]
    assert flag.category == Category.LABOR
    assert flag.actual == 30.0
    assert flag.label == "dealbreaker"
    assert result.overall == pytest.approx(55.0)
    assert "labor" in result.summary


def test_dealbreaker_cap_and_label_come_from_config():
    composer = PersonalizedScoreComposer(dealbreaker_label="avoid", dealbreaker_overall_cap=20.0)
    prefs = UserPreferences(weights={"labor": 1, "environment": 1}, dealbreakers={"labor": 40})
    result = composer.compose(SCORES, prefs)
    assert result.overall == 20.0
    assert result.dealbreakers[0].label == "avoid"


def test_threshold_met_exactly_is_not_a_dealbreaker(composer):
    result = composer.compose(SCORES, UserPreferences(dealbreakers={"labor": 30}))
    assert result.dealbreakers == []


def test_withheld_categories_are_excluded(composer):
    scores = {**SCORES, Category.POLITICS: None}
    prefs = UserPreferences(weights={"labor": 1, "politics": 1})
    result = composer.compose(scores, prefs)
    assert result.excluded_categories == [Category.POLITICS]
    assert result.overall == pytest.approx(30.0)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), [1], "heavy"])
def test_preferences_reject_non_numeric_values(bad):
    with pytest.raises(ValidationError):
        UserPreferences(weights={"labor": bad})
    with pytest.raises(ValidationError):
        UserPreferences(dealbreakers={"labor": bad})


def test_preferences_skip_null_entries():
    prefs = UserPreferences(weights={"labor": None, "social": 2})
    assert prefs.weights == {Category.SOCIAL: 2.0}


def test_no_scores_at_all(composer):
    result = composer.compose({category: None for category in CATEGORIES}, None)
    assert result.overall is None
    assert result.breakdown == []
    assert result.summary == "Not enough evidence to score yet"


# -- community outlook ---------------------------------------------------------


def test_shrinkage_pulls_small_samples_to_neutral():
    assert shrink(5.0, 0) == 3.0
    assert shrink(5.0, 5) == 3.4
    assert shrink(5.0, 20) == 4.0
    assert shrink(1.0, 1000) == pytest.approx(1.04)


@pytest.mark.parametrize("n,level", [(0, "none"), (9, "none"), (10, "low"), (29, "low"), (30, "medium"), (100, "high")])
def test_outlook_confidence_buckets(n, level):
    assert outlook_confidence(n) == level


def test_outlook_always_has_all_categories():
    rows = [CommunityRatingRow(category="labour", n=40, mean_score=4.5, sd=0.5, histogram=RatingHistogram(s4=20, s5=20))]
    outlook = build_outlook(rows)

    assert [o.category for o in outlook] == list(CATEGORIES)
    labor = outlook[0]
    assert labor.display_score == round((4.5 * 40 + 3.0 * 20) / 60, 2)
    assert labor.confidence == "medium"
    for empty in outlook[1:]:
        assert empty.n == 0
        assert empty.mean_score == 3.0
        assert empty.display_score == 3.0
        assert empty.confidence == "none"


def test_missing_mean_treated_as_neutral():
    outlook = build_outlook([CommunityRatingRow(category="social", n=12, mean_score=None)])
    assert outlook[-1].display_score == 3.0
    assert outlook[-1].confidence == "low"


def test_summarize_ratings_builds_rows():
    rows = summarize_ratings([("labor", 5), ("labor", 3), ("labor", 4), ("environment", 1)])
    labor, environment = rows
    assert labor.category == Category.LABOR
    assert labor.n == 3
    assert labor.mean_score == 4.0
    assert labor.sd == 1.0
    assert labor.histogram == RatingHistogram(s3=1, s4=1, s5=1)
    assert environment.sd == 0.0


@pytest.mark.parametrize("bad", [0, 6, 2.5, True])
def test_out_of_range_ratings_rejected(bad):
    with pytest.raises(RatingOutOfRangeError):
        summarize_ratings([("labor", bad)])


def test_outlook_from_mapping_of_ratings():
    outlook = outlook_from_ratings({"politics": [1, 1, 2]})
    politics = next(o for o in outlook if o.category == Category.POLITICS)
    assert politics.n == 3
    assert politics.histogram.s1 == 2
