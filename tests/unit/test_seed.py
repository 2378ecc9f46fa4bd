"""Unit tests for the default slot layout."""
from collections import Counter

from common.models import SlotType
from scripts.seed_slots import default_layout


def test_default_layout_counts():
    layout = default_layout()
    types = Counter(slot_type for _, slot_type, _ in layout)

    assert len(layout) == 40
    assert types[SlotType.NORMAL] == 30
    assert types[SlotType.ELECTRIC] == 10
    assert len({name for name, _, _ in layout}) == 40


def test_default_layout_floors():
    floors = {name: floor for name, _, floor in default_layout()}

    assert floors["A-1"] == 1
    assert floors["A-10"] == 1
    assert floors["A-11"] == 2
    assert floors["A-30"] == 3
    assert floors["E-5"] == 1
    assert floors["E-6"] == 2
