"""Unit tests for topic weight normalization."""

import math

import pytest

from behavior_profile.profile.normalizer import MATERIALITY_THRESHOLD, normalize


class TestNormalize:
    """Tests for normalize()."""

    def test_sums_to_one(self):
        """Test a regular map becomes a distribution."""
        result = normalize({"Technology": 3.0, "Science": 1.0})

        assert result == pytest.approx({"Technology": 0.75, "Science": 0.25})
        assert 0.99 <= sum(result.values()) <= 1.01

    def test_empty_map(self):
        """Test an empty map stays empty."""
        assert normalize({}) == {}

    def test_zero_total(self):
        """Test all-zero scores produce nothing."""
        assert normalize({"Technology": 0.0, "Science": 0.0}) == {}

    def test_non_finite_total(self):
        """Test infinite scores produce nothing."""
        assert normalize({"Technology": math.inf}) == {}

    def test_drops_immaterial_topics(self):
        """Test shares under the threshold are dropped and the rest renormalized."""
        result = normalize({"Technology": 99.5, "Science": 0.5})

        assert 0.5 / 100 < MATERIALITY_THRESHOLD
        assert result == {"Technology": 1.0}

    def test_keeps_topic_at_threshold(self):
        """Test a share exactly at the threshold is kept."""
        result = normalize({"Technology": 99.0, "Science": 1.0})

        assert set(result) == {"Technology", "Science"}
        assert sum(result.values()) == pytest.approx(1.0)

    def test_does_not_mutate_input(self):
        """Test the input mapping is left untouched."""
        raw = {"Technology": 2.0, "Science": 2.0}
        normalize(raw)
        assert raw == {"Technology": 2.0, "Science": 2.0}

    @pytest.mark.parametrize(
        "raw",
        [
            {"a": 1.0},
            {"a": 5.0, "b": 3.0, "c": 2.0},
            {"a": 1000.0, "b": 5.0, "c": 4.0, "d": 0.001},
            {"a": 0.2, "b": 0.0, "c": 0.8},
        ],
    )
    def test_idempotent(self, raw):
        """Test normalizing twice equals normalizing once."""
        once = normalize(raw)
        twice = normalize(once)

        assert twice.keys() == once.keys()
        for topic in once:
            assert twice[topic] == pytest.approx(once[topic], abs=1e-9)
