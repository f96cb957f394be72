import pytest

from catalog.services import scorer


def test_complete_product_scores_100(complete_product):
    score, issues = scorer.score(complete_product)
    assert score == 100
    assert issues == []


def test_empty_and_malformed_records_score_zero():
    assert scorer.score({}) == (0, [scorer.ISSUE_MISSING_IMAGE, scorer.ISSUE_MISSING_PRICE])
    assert scorer.calculate_completeness_score(None) == 0
    assert scorer.calculate_completeness_score({"price": "cheap", "images": "x.jpg"}) == 0


def test_short_name_and_description_get_partial_credit():
    breakdown = scorer.score_breakdown({"name": "Kettle", "description": "Steel kettle"})
    assert breakdown["name"]["current"] == 7
    assert breakdown["description"]["current"] == 5


def test_multilingual_text_uses_longest_translation():
    record = {"name": {"it": "Bollitore", "en": "Stainless kettle"}}
    assert scorer.score_breakdown(record)["name"]["current"] == 15


@pytest.mark.parametrize(
    "brand, expected",
    [
        ("Acme", 10),
        ({"brand_id": "b-1", "name": "Acme"}, 10),
        ({"brand_id": "b-1"}, 0),
        ({"label": "Acme"}, 0),
        ("  ", 0),
    ],
)
def test_brand_reference(brand, expected):
    assert scorer.score_breakdown({"brand": brand})["brand"]["current"] == expected


def test_marketing_features_capped():
    features = {"it": ["a", "b"], "en": ["a", "b", "c", "d", "e", "f", "g"]}
    assert scorer.score_breakdown({"marketing_features": features})["marketing_features"][
        "current"
    ] == 10
    assert scorer.score_breakdown({"marketing_features": ["a", "b"]})["marketing_features"][
        "current"
    ] == 4


def test_price_must_be_positive_number():
    assert scorer.find_critical_issues({"images": ["a.jpg"], "price": 0}) == [
        scorer.ISSUE_MISSING_PRICE
    ]
    assert scorer.find_critical_issues({"images": ["a.jpg"], "price": True}) == [
        scorer.ISSUE_MISSING_PRICE
    ]
    assert scorer.find_critical_issues({"images": ["a.jpg"], "price": 3}) == []


def test_primary_image_accepts_string_or_url_object():
    assert scorer.find_critical_issues({"images": [{"url": "a.jpg"}], "price": 1}) == []
    assert scorer.find_critical_issues({"images": [{"alt": "x"}], "price": 1}) == [
        scorer.ISSUE_MISSING_IMAGE
    ]


def test_score_is_deterministic(complete_product):
    assert scorer.score(complete_product) == scorer.score(dict(complete_product))


@pytest.mark.parametrize(
    "field, value",
    [
        ("name", "Stainless steel kettle"),
        ("images", ["https://cdn.example.com/a.jpg"]),
        ("price", 12.5),
        ("category", {"category_id": "c-1", "name": "Kitchen"}),
    ],
)
def test_adding_a_signal_never_lowers_the_score(complete_product, field, value):
    base = {k: v for k, v in complete_product.items() if k != field}
    before = scorer.calculate_completeness_score(base)
    after = scorer.calculate_completeness_score({**base, field: value})
    assert after >= before
    assert after > before
