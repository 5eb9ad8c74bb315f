import pytest

from order.cart import CartLineItem
from order.catalog import DiameterMultiplier, IngredientLine, Option, Section, SectionRepository
from order.pricing import (
    MultiplierIndex,
    area_multipliers,
    compute_line_total,
    ingredient_cost,
    line_breakdown,
    parse_size,
    recipe_total_cost,
    resolve_multiplier,
    round_half_up,
)


def _catalog():
    return SectionRepository([
        Section(key="velkost", label="Veľkosť", options=[
            Option(name="20", id="o20"),
            Option(name="25", id="o25"),
        ]),
        Section(key="korpus", label="Korpus", options=[
            Option(name="vanilkový", price=10.0, id="k1", linked_recipe_id="r1"),
            Option(name="bez receptu", price=4.0, id="k2"),
        ]),
        Section(key="ozdoba", label="Ozdoba", options=[
            Option(name="kvety", price=3.0, id="z1"),
        ]),
    ])


def _index(values=None):
    values = values or {"o20": 1.0, "o25": 1.6}
    return MultiplierIndex.build(
        [DiameterMultiplier("velkost", oid, v, "o20") for oid, v in values.items()],
        known_keys=["velkost", "korpus", "ozdoba"],
    )


# ---- Rounding and recipe costs
def test_round_half_up_rounds_halves_away_from_zero():
    assert round_half_up(0.125) == 0.13
    assert round_half_up(2.675) == 2.68
    assert round_half_up(1.5625, 1) == 1.6


def test_indivisible_ingredient_buys_whole_packages():
    line = IngredientLine(quantity=7, unit_price=3.00, package_size=5, indivisible=True)
    assert ingredient_cost(line) == 6.00


def test_divisible_ingredient_is_proportional():
    line = IngredientLine(quantity=3, unit_price=2.50, package_size=10)
    assert ingredient_cost(line) == 0.75


def test_non_positive_package_size_counts_as_one():
    assert ingredient_cost(IngredientLine(quantity=2, unit_price=1.5, package_size=0)) == 3.0


def test_recipe_total_rounds_each_line_then_the_sum():
    lines = [
        IngredientLine(quantity=1, unit_price=0.333, package_size=1),
        IngredientLine(quantity=1, unit_price=0.333, package_size=1),
        IngredientLine(quantity=1, unit_price=0.334, package_size=1),
    ]
    assert recipe_total_cost(lines) == 0.99


def test_recipe_without_lines_costs_nothing():
    assert recipe_total_cost([]) == 0


# ---- Sizes and area multipliers
@pytest.mark.parametrize("name, expected", [
    ("26", 26.0),
    ("26 cm", 26.0),
    (" 18.5cm", 18.5),
    ("malá", None),
    ("", None),
])
def test_parse_size(name, expected):
    assert parse_size(name) == expected


def test_area_multipliers_scale_by_area_relative_to_base():
    opts = [Option(name="20", id="a"), Option(name="25", id="b"), Option(name="30 cm", id="c")]
    assert area_multipliers(opts, "a") == {"a": 1.0, "b": 1.6, "c": 2.3}


def test_area_multipliers_default_for_non_numeric_names():
    opts = [Option(name="20", id="a"), Option(name="veľká", id="b")]
    assert area_multipliers(opts, "a")["b"] == 1.0
    # a non-numeric base gives every option the default
    assert area_multipliers(opts, "b") == {"a": 1.0, "b": 1.0}


# ---- Multiplier index
def test_index_lookup_prefers_exact_key():
    index = MultiplierIndex.build([
        DiameterMultiplier("velkost", "o1", 1.5),
        DiameterMultiplier("priemer", "o1", 2.5),
    ])
    assert index.lookup("velkost", "o1") == 1.5
    assert index.lookup("priemer", "o1") == 2.5


def test_index_lookup_falls_back_to_option_id():
    index = MultiplierIndex.build([DiameterMultiplier("velkost", "o1", 1.5)])
    assert index.lookup("unknown", "o1") == 1.5
    assert index.lookup("velkost", "nope") is None


def test_index_reconciles_misspelled_section_keys():
    index = MultiplierIndex.build([DiameterMultiplier("velksot", "o1", 1.5)], known_keys=["velkost", "korpus"])
    assert index.managed_sections == ["velkost"]
    assert index.by_key == {"velkost:o1": 1.5}


def test_index_keeps_far_keys_unchanged():
    index = MultiplierIndex.build([DiameterMultiplier("priemer", "o1", 1.5)], known_keys=["velkost"])
    assert index.managed_sections == ["priemer"]


def test_index_tracks_base_option():
    index = _index()
    assert index.base_by_section == {"velkost": "o20"}
    assert index.is_managed("velkost")
    assert not index.is_managed("korpus")


# ---- Multiplier resolution
def test_linked_option_is_scaled_by_the_selected_size():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25", "korpus": "vanilkový"})
    rows = {r.section_key: r for r in line_breakdown(item, _catalog(), _index())}
    assert rows["korpus"].multiplier == 1.6
    assert rows["korpus"].price == pytest.approx(16.0)
    assert rows["velkost"].multiplier == 1.0


def test_unlinked_option_is_never_scaled():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25", "korpus": "bez receptu"})
    total = compute_line_total(item, _catalog(), _index())
    assert total == pytest.approx(4.0)


def test_option_named_like_a_recipe_counts_as_linked():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25", "ozdoba": "kvety"})
    total = compute_line_total(item, _catalog(), _index(), recipe_names=["kvety"])
    assert total == pytest.approx(3.0 * 1.6)


def test_multipliers_do_not_compound():
    sections = SectionRepository([
        Section(key="a", label="A", options=[Option(name="a1", id="a1")]),
        Section(key="b", label="B", options=[Option(name="b1", id="b1")]),
        Section(key="c", label="C", options=[Option(name="linked", price=10.0, id="c1", linked_recipe_id="r")]),
    ])
    index = MultiplierIndex.build([
        DiameterMultiplier("a", "a1", 2.0),
        DiameterMultiplier("b", "b1", 3.0),
    ])
    item = CartLineItem(id="1", dynamic_selections={"a": "a1", "b": "b1", "c": "linked"})
    assert resolve_multiplier("c", item, sections, index) == 2.0
    assert compute_line_total(item, sections, index) == pytest.approx(20.0)


def test_managed_section_does_not_scale_itself():
    sections = SectionRepository([
        Section(key="velkost", label="V", options=[Option(name="25", id="o25", linked_recipe_id="r")]),
    ])
    index = MultiplierIndex.build([DiameterMultiplier("velkost", "o25", 1.6)])
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25"})
    assert resolve_multiplier("velkost", item, sections, index) == 1.0


def test_item_selection_wins_over_current_selection():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "20", "korpus": "vanilkový"})
    value = resolve_multiplier("korpus", item, _catalog(), _index(), current_selection={"velkost": "o25"})
    assert value == 1.0


def test_current_selection_used_when_item_has_no_size():
    item = CartLineItem(id="1", dynamic_selections={"korpus": "vanilkový"})
    value = resolve_multiplier("korpus", item, _catalog(), _index(), current_selection={"velkost": "o25"})
    assert value == 1.6


def test_no_size_selected_gives_default_multiplier():
    item = CartLineItem(id="1", dynamic_selections={"korpus": "vanilkový"})
    assert resolve_multiplier("korpus", item, _catalog(), _index()) == 1.0


# ---- Line totals
def test_line_total_adds_reward_without_scaling():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25", "korpus": "vanilkový"}, reward=5)
    assert compute_line_total(item, _catalog(), _index()) == pytest.approx(21.0)


def test_deleted_section_contributes_nothing():
    item = CartLineItem(id="1", dynamic_selections={"zmazana": "x", "ozdoba": "kvety"})
    assert compute_line_total(item, _catalog(), _index()) == pytest.approx(3.0)


def test_unknown_option_contributes_nothing():
    item = CartLineItem(id="1", dynamic_selections={"ozdoba": "neexistuje"})
    assert compute_line_total(item, _catalog(), _index()) == 0


def test_line_total_is_stable_across_calls():
    item = CartLineItem(id="1", dynamic_selections={"velkost": "25", "korpus": "vanilkový"}, reward=1.25)
    catalog, index = _catalog(), _index()
    first = compute_line_total(item, catalog, index)
    assert all(compute_line_total(item, catalog, index) == first for _ in range(3))
