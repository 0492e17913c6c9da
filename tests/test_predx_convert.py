"""
Tests for predx/forecasting/convert.py - Raw row conversion.
"""

import pytest

from predx.forecasting import convert
from predx.forecasting.classes import BinCat, BinLwr, Binary, FormatError, Point, Sample
from predx.forecasting.convert import GroupingError


def bincat_rows(location, probs, cats=("low", "mid", "high")):
    return [
        {"location": location, "target": "severity", "predx_class": "BinCat", "cat": c, "prob": p}
        for c, p in zip(cats, probs)
    ]


class TestToPredx:
    """Tests for to_predx conversion."""

    def test_point_and_binary_one_record_per_row(self):
        """Test scalar classes map rows one-to-one in input order."""
        rows = [
            {"location": "Mercury", "predx_class": "Binary", "prob": 0.1},
            {"location": "Venus", "predx_class": "Point", "point": 3},
            {"location": "Mercury", "predx_class": "Binary", "prob": 0.2},
        ]
        table = convert.to_predx(rows)

        assert len(table) == 3
        assert [r.get("location") for r in table] == ["Mercury", "Venus", "Mercury"]
        assert table[0].value == Binary(0.1)
        assert table[1].value == Point(3)

    def test_bincat_rows_grouped(self):
        """Test BinCat rows sharing a key collapse into one record."""
        table = convert.to_predx(bincat_rows("Mars", [0.2, 0.5, 0.3]))

        assert len(table) == 1
        record = table[0]
        assert record.ok
        assert record.fields == {"location": "Mars", "target": "severity"}
        assert record.value.cat == ("low", "mid", "high")

    def test_group_placed_at_first_row(self):
        """Test a grouped record takes the position of its first row."""
        rows = [
            bincat_rows("Mars", [0.2, 0.5, 0.3])[0],
            {"location": "Earth", "predx_class": "Point", "point": 1},
        ] + bincat_rows("Mars", [0.2, 0.5, 0.3])[1:]
        table = convert.to_predx(rows)

        assert [r.predx_class for r in table] == ["BinCat", "Point"]
        assert len(table[0].value.bins) == 3

    def test_interleaved_groups(self):
        """Test rows of two groups interleaved still form two records."""
        mars = bincat_rows("Mars", [0.2, 0.5, 0.3])
        venus = bincat_rows("Venus", [0.1, 0.1, 0.8])
        rows = [row for pair in zip(mars, venus) for row in pair]
        table = convert.to_predx(rows)

        assert [r.get("location") for r in table] == ["Mars", "Venus"]
        assert table[1].value.prob == (0.1, 0.1, 0.8)

    def test_sample_row_with_draw_list(self):
        """Test a Sample row may carry all its draws at once."""
        rows = [
            {"location": "US", "predx_class": "Sample", "sample": [1, 2, 3]},
            {"location": "US", "predx_class": "Sample", "sample": 4},
        ]
        table = convert.to_predx(rows)

        assert len(table) == 1
        assert table[0].value == Sample((1.0, 2.0, 3.0, 4.0))

    def test_binlwr_and_sample(self):
        rows = [
            {"location": "US", "predx_class": "BinLwr", "lwr": "1.0", "prob": "0.4"},
            {"location": "US", "predx_class": "BinLwr", "lwr": "0.0", "prob": "0.6"},
            {"location": "US", "predx_class": "Sample", "sample": "1.5"},
            {"location": "US", "predx_class": "Sample", "sample": "2.5"},
        ]
        table = convert.to_predx(rows)

        assert len(table) == 2
        assert table[0].value == BinLwr(((0.0, 0.6), (1.0, 0.4)))
        assert table[1].value == Sample((1.5, 2.5))

    def test_invalid_group_becomes_error_record(self):
        """Test a group failing validation yields an error record, not an exception."""
        rows = bincat_rows("Mars", [0.2, 0.2, 0.2]) + [
            {"location": "Earth", "target": "severity", "predx_class": "Binary", "prob": 0.5},
        ]
        table = convert.to_predx(rows)

        assert len(table) == 2
        assert not table[0].ok
        assert "sum to" in table[0].error
        assert table[0].predx_class == "BinCat"
        assert table[1].ok

    def test_missing_value_error_record(self):
        table = convert.to_predx([{"location": "Mars", "predx_class": "Point", "point": "NA"}])
        assert table[0].error == "NA(s) found in entry"

    def test_unknown_tag_error_record(self):
        """Test an unknown tag gives an error record keeping the raw tag."""
        table = convert.to_predx([{"location": "Mars", "predx_class": "Quantile", "point": 1}])

        assert not table[0].ok
        assert table[0].predx_class == "Quantile"
        assert "unknown predx_class" in table[0].error

    def test_missing_tag_error_record(self):
        table = convert.to_predx([{"location": "Mars", "point": 1}])
        assert table[0].error == "missing predx_class"
        assert table[0].predx_class == ""

    def test_absent_payload_field_error_record(self):
        table = convert.to_predx([{"location": "Mars", "predx_class": "Binary"}])
        assert "missing field(s): prob" in table[0].error

    def test_forced_class_applies_to_every_row(self):
        """Test an explicit predx_class overrides row tags."""
        rows = [{"location": "Mars", "prob": 0.3}, {"location": "Venus", "prob": 0.9}]
        table = convert.to_predx(rows, predx_class="Binary")

        assert all(r.ok for r in table)
        assert [r.predx_class for r in table] == ["Binary", "Binary"]

    def test_forced_unknown_class_raises(self):
        with pytest.raises(FormatError):
            convert.to_predx([{"prob": 0.3}], predx_class="Nope")

    def test_every_row_lands_somewhere(self):
        """Test each input row is accounted for by exactly one record."""
        rows = bincat_rows("Mars", [0.2, 0.5, 0.3]) + [
            {"location": "Venus", "predx_class": "Bogus"},
            {"location": "Earth", "predx_class": "Point", "point": 2},
        ]
        table = convert.to_predx(rows)
        assert table.summary() == {
            "total": 3,
            "valid": 2,
            "errors": 1,
            "by_class": {"BinCat": 1, "Bogus": 1, "Point": 1},
        }

    def test_empty_input(self):
        assert len(convert.to_predx([])) == 0


class TestKeyFields:
    """Tests for explicit grouping fields."""

    def test_key_fields_disagreement_raises(self):
        """Test rows grouped together must agree on carried fields."""
        rows = bincat_rows("Mars", [0.5, 0.5], cats=("a", "b"))
        rows[1]["target"] = "other"

        with pytest.raises(GroupingError, match="target"):
            convert.to_predx(rows, key_fields=["location"])

    def test_key_fields_agreement(self):
        rows = bincat_rows("Mars", [0.5, 0.5], cats=("a", "b"))
        table = convert.to_predx(rows, key_fields=["location"])

        assert len(table) == 1
        assert table[0].fields == {"location": "Mars", "target": "severity"}

    def test_default_grouping_splits_on_any_field(self):
        """Test without key_fields differing descriptive fields form separate groups."""
        rows = bincat_rows("Mars", [1.0, 0.0], cats=("a", "b"))
        rows[1]["target"] = "other"
        table = convert.to_predx(rows)

        assert len(table) == 2


class TestNormalize:
    """Tests for probability rescaling during conversion."""

    @pytest.mark.parametrize("p", [0.45, 0.55])
    def test_band_edges_inclusive(self, p):
        """Test sums of exactly 0.9 and 1.1 are rescaled."""
        rows = bincat_rows("Mars", [p, p], cats=("a", "b"))
        table = convert.to_predx(rows, normalize=True)

        assert table[0].ok
        assert table[0].value.prob == pytest.approx((0.5, 0.5))

    def test_outside_band_not_rescaled(self):
        rows = bincat_rows("Mars", [0.44, 0.44], cats=("a", "b"))
        table = convert.to_predx(rows, normalize=True)

        assert not table[0].ok
        assert "sum to" in table[0].error

    def test_without_normalize_rejected(self):
        rows = bincat_rows("Mars", [0.45, 0.45], cats=("a", "b"))
        assert not convert.to_predx(rows)[0].ok

    def test_normalize_probs_leaves_missing_untouched(self):
        assert convert.normalize_probs([0.5, "NA"]) == [0.5, "NA"]

    def test_normalize_probs_text(self):
        assert convert.normalize_probs(["0.5", "0.5"]) == [0.5, 0.5]


class TestDescriptiveFields:
    """Tests for row key extraction."""

    def test_payload_and_tag_excluded(self):
        row = {"location": "Mars", "predx_class": "Point", "point": 1, "target": "t"}
        assert convert.descriptive_fields(row) == [("location", "Mars"), ("target", "t")]


def test_bincat_value_type():
    """Test grouped BinCat records hold BinCat values."""
    table = convert.to_predx(bincat_rows("Mars", [0.2, 0.5, 0.3]))
    assert isinstance(table[0].value, BinCat)
