# test_conflict_resolution.py
# Description: Tests for the conflict resolution strategies and resolver
#
# Imports
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from hypothesis import given, strategies as st
#
# Local Imports
from cloudbridge_API.app.core.Sync.conflict import ConflictResolver, last_write_wins, merge, manual
from cloudbridge_API.app.core.Sync.exceptions import (
    ManualResolutionRequired,
    ResolutionError,
    ValidationError
)
from cloudbridge_API.app.core.Sync.models import ConflictPair, ResolutionStrategy
#
#######################################################################################################################
#
# Helpers

EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)


def iso(offset_seconds: int) -> str:
    return (EPOCH + timedelta(seconds=offset_seconds)).isoformat().replace("+00:00", "Z")


json_scalars = st.one_of(st.none(), st.booleans(), st.integers(), st.text(max_size=5))
json_values = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=4), children, max_size=4)
    ),
    max_leaves=12
)
records = st.dictionaries(st.text(max_size=4), json_values, max_size=5)
odd_keyed_records = st.dictionaries(
    st.one_of(st.text(max_size=4), st.tuples(st.integers(), st.text(max_size=2)), st.frozensets(st.integers(), max_size=2)),
    json_values,
    min_size=1,
    max_size=5
)

#
# Test Classes

class TestLastWriteWins:

    def test_newer_local_wins(self):
        local = {"id": "1", "modificationDate": "2024-05-02T10:00:00Z", "v": "local"}
        remote = {"id": "1", "modificationDate": "2024-05-01T10:00:00Z", "v": "remote"}
        assert last_write_wins(local, remote) is local

    def test_newer_remote_wins(self):
        local = {"id": "1", "modificationDate": "2024-05-01T10:00:00Z"}
        remote = {"id": "1", "modificationDate": "2024-05-01T10:00:01Z"}
        assert last_write_wins(local, remote) is remote

    def test_tie_keeps_local(self):
        local = {"modificationDate": "2024-05-01T10:00:00Z"}
        remote = {"modificationDate": "2024-05-01T10:00:00.000+00:00"}
        assert last_write_wins(local, remote) is local

    def test_both_unparseable_keeps_local(self):
        local = {"modificationDate": "not a date"}
        remote = {}
        assert last_write_wins(local, remote) is local

    def test_unparseable_local_yields_remote(self):
        local = {"modificationDate": "garbage"}
        remote = {"modificationDate": "1999-01-01T00:00:00Z"}
        assert last_write_wins(local, remote) is remote

    def test_unparseable_remote_yields_local(self):
        local = {"modificationDate": "1999-01-01T00:00:00Z"}
        remote = {"modificationDate": None}
        assert last_write_wins(local, remote) is local

    def test_epoch_millisecond_dates_compare_with_iso(self):
        local = {"modificationDate": 1714557600000}  # 2024-05-01T10:00:00Z
        remote = {"modificationDate": "2024-05-01T09:59:59Z"}
        assert last_write_wins(local, remote) is local

    @given(st.integers(min_value=0, max_value=10 ** 8), st.integers(min_value=0, max_value=10 ** 8))
    def test_result_is_local_iff_local_not_older(self, t1, t2):
        local = {"modificationDate": iso(t1)}
        remote = {"modificationDate": iso(t2)}
        expected = local if t1 >= t2 else remote
        assert last_write_wins(local, remote) is expected

    @given(st.integers(min_value=0, max_value=10 ** 8), st.text(alphabet="xyz!", max_size=6))
    def test_invalid_date_always_yields_other_side(self, t, garbage):
        valid = {"modificationDate": iso(t)}
        invalid = {"modificationDate": garbage}
        assert last_write_wins(invalid, valid) is valid
        assert last_write_wins(valid, invalid) is valid


class TestMerge:

    def test_scalar_conflict_keeps_local_and_adds_remote_only_keys(self):
        assert merge({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 2, "c": 4}

    def test_arrays_union_in_order(self):
        assert merge({"x": [1, 2, 3]}, {"x": [3, 4, 5]}) == {"x": [1, 2, 3, 4, 5]}

    def test_array_duplicates_within_one_side_collapse(self):
        assert merge({"x": [1, 1, 2]}, {"x": [2, 3, 3]}) == {"x": [1, 2, 3]}

    def test_array_union_keeps_booleans_distinct_from_numbers(self):
        assert merge({"x": [1, 0]}, {"x": [True, False]}) == {"x": [1, 0, True, False]}

    def test_nested_booleans_stay_distinct_from_numbers(self):
        assert merge({"x": [[1]]}, {"x": [[True]]}) == {"x": [[1], [True]]}
        assert merge({"x": [{"flag": 0}]}, {"x": [{"flag": False}]}) == {"x": [{"flag": 0}, {"flag": False}]}
        assert merge({"x": [[1, {"a": True}]]}, {"x": [[1, {"a": True}]]}) == {"x": [[1, {"a": True}]]}

    def test_nested_objects_recurse(self):
        local = {"profile": {"name": "John", "phones": ["111"], "meta": {"v": 1}}}
        remote = {"profile": {"name": "Johnny", "phones": ["222", "111"], "meta": {"w": 2}}}
        assert merge(local, remote) == {
            "profile": {"name": "John", "phones": ["111", "222"], "meta": {"v": 1, "w": 2}}
        }

    def test_type_mismatch_keeps_local(self):
        assert merge({"a": [1]}, {"a": {"b": 2}}) == {"a": [1]}
        assert merge({"a": "text"}, {"a": [1, 2]}) == {"a": "text"}

    def test_result_shares_no_containers_with_inputs(self):
        local = {"nested": {"list": [1]}}
        remote = {"extra": {"k": [2]}}
        merged = merge(local, remote)
        merged["nested"]["list"].append(99)
        merged["extra"]["k"].append(99)
        assert local == {"nested": {"list": [1]}}
        assert remote == {"extra": {"k": [2]}}

    def test_shared_subobject_is_not_a_cycle(self):
        shared = {"k": [1, 2]}
        assert merge({"a": shared, "b": shared}, {"a": shared}) == {"a": {"k": [1, 2]}, "b": {"k": [1, 2]}}

    def test_same_object_on_both_sides_is_not_a_cycle(self):
        record = {"a": {"b": [1]}}
        assert merge(record, record) == {"a": {"b": [1]}}

    def test_self_referencing_local_is_rejected(self):
        local = {"a": 1}
        local["self"] = local
        with pytest.raises(ResolutionError) as exc_info:
            merge(local, {"b": 2})
        assert exc_info.value.strategy == "merge"

    def test_cycle_inside_remote_array_is_rejected(self):
        items = []
        items.append(items)
        with pytest.raises(ResolutionError):
            merge({"x": [1]}, {"x": items})

    def test_cycle_in_discarded_remote_value_is_rejected(self):
        loop = {}
        loop["again"] = loop
        with pytest.raises(ResolutionError):
            merge({"a": 1}, {"a": loop})

    @given(records, records)
    def test_local_keys_and_scalars_survive(self, local, remote):
        merged = merge(local, remote)
        assert set(merged) == set(local) | set(remote)
        for key, value in local.items():
            if not isinstance(value, (dict, list)):
                assert merged[key] == value

    @given(st.lists(st.integers(), max_size=8), st.lists(st.integers(), max_size=8))
    def test_array_union_properties(self, left, right):
        merged = merge({"x": left}, {"x": right})["x"]
        expected = []
        for item in left + right:
            if item not in expected:
                expected.append(item)
        assert merged == expected


class TestManual:

    def test_always_raises(self):
        with pytest.raises(ManualResolutionRequired) as exc_info:
            manual({"id": "1", "v": "local"}, {"id": "1", "v": "cloud"})
        error = exc_info.value
        assert json.loads(error.local) == {"id": "1", "v": "local"}
        assert json.loads(error.remote) == {"id": "1", "v": "cloud"}
        assert error.status == 409

    @given(records, records)
    def test_never_returns(self, local, remote):
        with pytest.raises(ManualResolutionRequired):
            manual(local, remote)

    @given(odd_keyed_records, records)
    def test_never_returns_for_keys_json_cannot_encode(self, local, remote):
        with pytest.raises(ManualResolutionRequired) as exc_info:
            ConflictResolver().resolve(local, remote, "manual")
        assert isinstance(exc_info.value.local, str)

    def test_self_referencing_record_still_escalates(self):
        local = {"id": "x"}
        local["self"] = local
        with pytest.raises(ManualResolutionRequired) as exc_info:
            ConflictResolver().resolve(local, {"id": "x"}, "manual")
        assert "{...}" in exc_info.value.local
        assert json.loads(exc_info.value.remote) == {"id": "x"}

    def test_tuple_keys_still_escalate(self):
        with pytest.raises(ManualResolutionRequired) as exc_info:
            ConflictResolver().resolve({("a", "b"): 1}, {"id": "x"}, "manual")
        assert exc_info.value.local == repr({("a", "b"): 1})


class TestConflictResolver:

    @pytest.fixture
    def resolver(self):
        return ConflictResolver()

    def test_default_strategy_is_last_write_wins(self, resolver):
        local = {"modificationDate": "2024-01-01T00:00:00Z"}
        remote = {"modificationDate": "2024-01-02T00:00:00Z"}
        assert resolver.resolve(local, remote) is remote
        assert resolver.resolve(local, remote, None) is remote

    @pytest.mark.parametrize("name", ["merge", "MERGE", ResolutionStrategy.MERGE])
    def test_merge_by_name_or_enum(self, resolver, name):
        assert resolver.resolve({"a": 1}, {"b": 2}, name) == {"a": 1, "b": 2}

    @pytest.mark.parametrize("alias", ["lastWriteWins", "last_write_wins", "lww", "last-write-wins"])
    def test_last_write_wins_aliases(self, resolver, alias):
        local = {"modificationDate": "2024-01-03T00:00:00Z"}
        assert resolver.resolve(local, {"modificationDate": "2024-01-02T00:00:00Z"}, alias) is local

    def test_unknown_strategy_is_input_error(self, resolver):
        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve({}, {}, "coin-flip")
        assert exc_info.value.status == 400
        assert exc_info.value.message == "Invalid conflict resolution strategy"

    def test_manual_passes_through(self, resolver):
        with pytest.raises(ManualResolutionRequired):
            resolver.resolve({"id": "1"}, {"id": "1"}, "manual")

    def test_cycle_error_passes_through_unwrapped(self, resolver):
        local = {}
        local["me"] = local
        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve(local, {}, "merge")
        assert "reference cycle" in exc_info.value.message

    def test_non_mapping_input_is_validation_error(self, resolver):
        with pytest.raises(ValidationError):
            resolver.resolve(["not", "a", "record"], {}, "merge")

    def test_unexpected_failure_is_wrapped(self):
        broken = MagicMock(side_effect=KeyError("modificationDate"))
        resolver = ConflictResolver({ResolutionStrategy.LAST_WRITE_WINS: broken})
        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve({"a": 1}, {"a": 2})
        error = exc_info.value
        assert error.message == "Failed to resolve conflict"
        assert error.strategy == "last-write-wins"
        assert isinstance(error.original_error, KeyError)

    def test_strategy_missing_from_table_is_input_error(self):
        resolver = ConflictResolver({ResolutionStrategy.MERGE: merge})
        assert resolver.available_strategies() == ["merge"]
        with pytest.raises(ResolutionError) as exc_info:
            resolver.resolve({}, {}, "manual")
        assert exc_info.value.status == 400

    def test_available_strategies(self, resolver):
        assert resolver.available_strategies() == ["last-write-wins", "merge", "manual"]

    def test_resolve_pair(self, resolver):
        pair = ConflictPair(local={"a": [1]}, remote={"a": [2]}, strategy=ResolutionStrategy.MERGE)
        assert resolver.resolve_pair(pair) == {"a": [1, 2]}

#
# End of test_conflict_resolution.py
#######################################################################################################################
