"""Tests for the taxonomy mapping and the keyword classifier."""

import pytest

from analysis.keywords import classify_by_keywords, classify_image_reference
from models.classification import ClassificationResult, clamp_confidence
from models.taxonomy import (
    CATEGORY_NAMES,
    MainCategory,
    TAXONOMY,
    map_to_standard_category,
    match_category_name,
)


def test_taxonomy_covers_every_category():
    """Every main category has keywords and a priority"""
    assert set(TAXONOMY) == set(MainCategory)
    assert TAXONOMY[MainCategory.ROAD].priority == 1
    assert TAXONOMY[MainCategory.LIGHTING].priority == 2
    assert TAXONOMY[MainCategory.OTHER].priority == 4
    assert all(entry.keywords for entry in TAXONOMY.values())
    assert CATEGORY_NAMES[-1] == "Other"


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Road & Infrastructure", MainCategory.ROAD),
        ("  water & sewerage ", MainCategory.WATER),
        ("overflowing bin near market", MainCategory.WASTE),
        ("Broken streetlight", MainCategory.LIGHTING),
        ("stray dog chasing kids", MainCategory.SAFETY),
        ("sewer smell", MainCategory.WATER),
        ("something unrelated", MainCategory.OTHER),
        ("", MainCategory.OTHER),
        (None, MainCategory.OTHER),
    ],
)
def test_map_to_standard_category(label, expected):
    """Free-text labels map into the closed taxonomy"""
    assert map_to_standard_category(label) == expected


def test_match_category_name_is_exact():
    assert match_category_name("WASTE MANAGEMENT") == MainCategory.WASTE
    assert match_category_name("Waste") is None
    assert match_category_name(None) is None


def test_classification_result_normalizes_fields():
    """Unknown categories become Other and confidence is clamped"""
    result = ClassificationResult(main_category="Parks", confidence=1.7)
    assert result.main_category == MainCategory.OTHER
    assert result.confidence == 1.0

    result = ClassificationResult(main_category="pothole", confidence=-0.2)
    assert result.main_category == MainCategory.ROAD
    assert result.confidence == 0.0


def test_clamp_confidence_handles_junk():
    assert clamp_confidence("0.4") == 0.4
    assert clamp_confidence("high", default=0.5) == 0.5
    assert clamp_confidence(float("nan")) == 0.0
    assert clamp_confidence(None) == 0.0


def test_keywords_pothole_description():
    """Road keywords win for a pothole description"""
    result = classify_by_keywords("large pothole blocking the road near my house")
    assert result.main_category == MainCategory.ROAD
    assert result.confidence == pytest.approx(0.84)
    assert result.subcategory == "pothole"
    assert result.source == "keyword-fallback"


def test_keywords_longest_keyword_scores():
    """The longest matching keyword in a category decides its score"""
    result = classify_by_keywords("There is a huge garbage pile next to the bus stop")
    assert result.main_category == MainCategory.WASTE
    assert result.subcategory == "garbage pile"
    assert result.confidence == pytest.approx(0.9)


def test_keywords_priority_scales_score():
    """Lower-priority categories need longer evidence"""
    result = classify_by_keywords("The streetlight outside my house is flickering")
    assert result.main_category == MainCategory.LIGHTING
    # 'streetlight' = 1.1 / priority 2
    assert result.confidence == pytest.approx(0.7 + 0.55 * 0.2)


def test_keywords_case_insensitive():
    result = classify_by_keywords("RAW SEWAGE everywhere")
    assert result.main_category == MainCategory.WATER


def test_keywords_blank_and_unmatched():
    blank = classify_by_keywords("   ")
    assert blank.main_category == MainCategory.OTHER
    assert blank.confidence == pytest.approx(0.15)

    unmatched = classify_by_keywords("qwerty zxcv")
    assert unmatched.main_category == MainCategory.OTHER
    assert unmatched.confidence == pytest.approx(0.35)


def test_keywords_source_label():
    result = classify_by_keywords("burst pipe on 3rd street", source="voice")
    assert result.source == "voice"
    assert result.main_category == MainCategory.WATER


def test_image_reference_hint():
    result = classify_image_reference("https://cdn.example.com/uploads/lamp_01.jpg")
    assert result.main_category == MainCategory.LIGHTING
    assert result.confidence == pytest.approx(0.7)
    assert result.source == "image"


def test_image_reference_without_hint():
    """An unrecognized image is still treated as relevant evidence"""
    result = classify_image_reference("uploads/IMG_2041.jpg")
    assert result.main_category == MainCategory.OTHER
    assert result.confidence == pytest.approx(0.6)
    assert result.subcategory == "unidentified civic issue"
