"""Tests for device identity comparisons."""
from printfleet.devices.base import ObservedDevice
from printfleet.reconcile import driver_matches, normalize_address


class TestDriverMatches:
    """Tests for substring-tolerant driver comparison."""

    def test_exact_match(self):
        assert driver_matches("HP Universal Printing PCL 6", "HP Universal Printing PCL 6")

    def test_vendor_suffix_tolerated(self):
        """Observed names may carry a version suffix."""
        assert driver_matches("HP Universal Printing PCL 6", "HP Universal Printing PCL 6 (v7.1.0)")

    def test_case_insensitive(self):
        assert driver_matches("hp universal", "HP Universal Printing PCL 6")

    def test_different_driver(self):
        assert not driver_matches("Xerox Global Print Driver", "HP Universal Printing PCL 6")

    def test_observed_shorter_than_desired(self):
        """Only the desired name has to appear in the observed one."""
        assert not driver_matches("HP Universal Printing PCL 6", "HP Universal")

    def test_empty_desired_never_matches(self):
        assert not driver_matches("", "HP Universal Printing PCL 6")

    def test_missing_observed(self):
        assert not driver_matches("X", None)


class TestNormalizeAddress:
    """Tests for address normalization."""

    def test_trims_and_lowercases(self):
        assert normalize_address("  PRN-01.Example.COM ") == "prn-01.example.com"

    def test_missing(self):
        assert normalize_address(None) == ""
        assert normalize_address("") == ""
