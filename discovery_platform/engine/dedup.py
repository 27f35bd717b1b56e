# engine/dedup.py
import re

KEY_SEPARATOR = '::'

# Places renders the same business with and without the possessive
# apostrophe, and with "St"/"St."/"Street" interchangeably.
_FARMERS_APOSTROPHE = re.compile(r"\bfarmers['’]")
_STREET_ABBREV = re.compile(r"\bst\b\.?")


def normalize_value(value: str) -> str:
    # str.lower() is locale-independent, keys stay stable across machines
    return (value or '').strip().lower()


def normalize_name(value: str) -> str:
    name = normalize_value(value)
    name = _FARMERS_APOSTROPHE.sub('farmers', name)
    name = _STREET_ABBREV.sub('street', name)
    return name


def dedup_key(name: str, city: str) -> str:
    """
    Canonical identity for a discovered business: normalized name + city.

    dedup_key("Smith's Farm", "Guelph") == dedup_key("smith's farm", "  GUELPH  ")
    dedup_key("Farmers' Market", "Lincoln") == dedup_key("Farmers Market", "Lincoln")
    """
    return f"{normalize_name(name)}{KEY_SEPARATOR}{normalize_value(city)}"
