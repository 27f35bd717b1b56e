"""Tests for the lead dedup key."""

from engine.dedup import dedup_key


def test_case_and_whitespace_are_ignored():
    assert dedup_key("Smith's Farm", "Guelph") == dedup_key("smith's farm", "  GUELPH  ")


def test_key_format():
    assert dedup_key('  Green Acres ', 'Lincoln') == 'green acres::lincoln'


def test_farmers_apostrophe_variants():
    plain = dedup_key('Farmers Market', 'Lincoln')
    assert dedup_key("Farmers' Market", 'Lincoln') == plain
    assert dedup_key('Farmers’ Market', 'Lincoln') == plain


def test_street_abbreviation():
    full = dedup_key('Main Street Market', 'Vineland')
    assert dedup_key('Main St Market', 'Vineland') == full
    assert dedup_key('Main St. Market', 'Vineland') == full


def test_street_only_as_a_word():
    assert dedup_key('Stone Farm', 'Jordan') == 'stone farm::jordan'


def test_city_distinguishes_branches():
    assert dedup_key('Apple Barn', 'Guelph') != dedup_key('Apple Barn', 'Milton')


def test_missing_values():
    assert dedup_key('', None) == '::'
