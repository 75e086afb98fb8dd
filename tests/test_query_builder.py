import re

import pytest

from epc_api.services.errors import InvalidFilterError
from epc_api.services.query_builder import (
    FLOOR_AREA_CONDITIONS,
    BuiltQuery,
    Predicate,
    QueryBuilder,
    build_where,
)


def _placeholder_numbers(sql: str):
    return [int(n) for n in re.findall(r":p(\d+)", sql)]


def test_empty_filter_matches_everything():
    built = build_where({})
    assert built.where_sql == ""
    assert built.where_clause == ""
    assert built.params == []
    assert built.bind_params() == {}


def test_postcode_becomes_uppercase_half_open_range():
    built = build_where({"postcode": " sw1a "})
    assert built.where_sql == "postcode >= :p1 AND postcode < :p2"
    assert built.params == ["SW1A", "SW1AZ"]


def test_rating_is_exact_match():
    built = build_where({"rating": "E"})
    assert built.where_sql == "current_energy_rating = :p1"
    assert built.params == ["E"]


def test_fuel_is_case_insensitive_substring():
    built = build_where({"fuel": "LPG"})
    assert built.where_sql == "LOWER(main_fuel) LIKE :p1 ESCAPE '\\'"
    assert built.params == ["%lpg%"]


def test_fuel_like_wildcards_are_escaped():
    built = build_where({"fuel": "50%_off"})
    assert built.params == ["%50\\%\\_off%"]


def test_property_types_get_one_placeholder_each():
    built = build_where({"property_type": ["Flat", "House", "Bungalow"]})
    assert built.where_sql == "property_type IN (:p1, :p2, :p3)"
    assert built.params == ["Flat", "House", "Bungalow"]


def test_empty_property_type_list_adds_nothing():
    assert build_where({"property_type": []}).where_sql == ""


@pytest.mark.parametrize("column", ["local_authority", "constituency", "uprn"])
def test_exact_match_columns(column):
    built = build_where({column: "X1"})
    assert built.where_sql == f"{column} = :p1"
    assert built.params == ["X1"]


@pytest.mark.parametrize("label,sql", sorted(FLOOR_AREA_CONDITIONS.items()))
def test_floor_area_maps_to_literal_predicate(label, sql):
    built = build_where({"floor_area": label})
    assert built.where_sql == sql
    assert built.params == []


def test_unknown_floor_area_is_parenthesized():
    built = build_where({"rating": "D", "floor_area": "unknown"})
    assert built.where_sql == (
        "current_energy_rating = :p1 AND (total_floor_area IS NULL OR total_floor_area = 0)"
    )


def test_unrecognized_floor_area_label_is_rejected():
    with pytest.raises(InvalidFilterError):
        build_where({"floor_area": "200m+"})


def test_cursor_is_strict_greater_than():
    built = build_where({}, cursor="K005")
    assert built.where_sql == "lmk_key > :p1"
    assert built.params == ["K005"]


def test_cursor_argument_overrides_filter_cursor():
    built = build_where({"cursor": "K001"}, cursor="K009")
    assert built.params == ["K009"]


def test_every_filter_together_keeps_placeholders_contiguous():
    built = build_where(
        {
            "postcode": "sw1a",
            "rating": "F",
            "fuel": "mains gas (not community)",
            "property_type": ["Flat", "House"],
            "local_authority": "E09000033",
            "constituency": "E14000639",
            "floor_area": "1-55m²",
            "uprn": "100001",
        },
        cursor="K000",
    )
    numbers = _placeholder_numbers(built.where_sql)
    assert numbers == list(range(1, len(built.params) + 1))
    assert built.params == [
        "SW1A",
        "SW1AZ",
        "F",
        "%mains gas (not community)%",
        "Flat",
        "House",
        "E09000033",
        "E14000639",
        "100001",
        "K000",
    ]
    bound = built.bind_params()
    assert bound["p5"] == "Flat"
    assert bound["p10"] == "K000"


def test_literal_predicate_between_bound_ones_does_not_shift_numbering():
    qb = QueryBuilder()
    qb.add("rating", "=", "A")
    qb.add_literal("total_floor_area", "total_floor_area > 110")
    qb.add("lmk_key", ">", "K1")
    built = qb.build()
    assert built.where_sql == "rating = :p1 AND total_floor_area > 110 AND lmk_key > :p2"
    assert built.params == ["A", "K1"]


def test_user_values_never_reach_sql_text():
    evil = "'; DROP TABLE certificates_stg; --"
    built = build_where({"postcode": evil, "local_authority": evil, "cursor": evil})
    assert "DROP" not in built.where_sql
    assert evil in built.params


@pytest.mark.parametrize(
    "kwargs",
    [
        {"column": "x", "operator": "LIKE", "values": ("a",)},
        {"column": "x", "operator": "=", "values": ()},
        {"column": "x", "operator": "=", "values": ("a", "b")},
        {"column": "x", "operator": "in", "values": ()},
        {"column": "x", "operator": "literal", "values": ("a",), "literal": "x = 1"},
    ],
)
def test_malformed_predicates_are_refused(kwargs):
    with pytest.raises(ValueError):
        Predicate(**kwargs)


def test_built_query_where_clause_prefix():
    assert BuiltQuery("a = :p1", ["x"]).where_clause == "WHERE a = :p1"
