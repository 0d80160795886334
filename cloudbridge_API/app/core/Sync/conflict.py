# conflict.py
# Description: Conflict resolution strategies for divergent local/remote records.
#
# Strategies are plain functions keyed by `ResolutionStrategy` in `STRATEGIES`
# and looked up at call time by `ConflictResolver.resolve`.
#
# Imports
import json
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Set, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from .exceptions import ResolutionError, ManualResolutionRequired, ValidationError
from .models import ConflictPair, ResolutionStrategy, SyncRecord, parse_timestamp
#
########################################################################################################################
#
# Functions:

def last_write_wins(local: SyncRecord, remote: SyncRecord) -> SyncRecord:
    """
    Keeps whichever record has the newer `modificationDate`.

    An unparseable date counts as infinitely old for its side only. Local
    wins when both dates are unparseable and on exact ties.
    """
    local_ts = parse_timestamp(local.get("modificationDate"))
    remote_ts = parse_timestamp(remote.get("modificationDate"))

    if local_ts is None and remote_ts is None:
        logger.debug("Last-write-wins: neither modificationDate parses, keeping local")
        return local
    if local_ts is None:
        logger.debug("Last-write-wins: local modificationDate unparseable, keeping remote")
        return remote
    if remote_ts is None:
        logger.debug("Last-write-wins: remote modificationDate unparseable, keeping local")
        return local

    # Equal timestamps keep local; the tie-break is a policy choice.
    return local if local_ts >= remote_ts else remote


def merge(local: SyncRecord, remote: SyncRecord) -> SyncRecord:
    """
    Deep-merges two records.

    - Keys present on one side only are carried over.
    - Scalar conflicts: local wins.
    - Nested mappings: merged recursively.
    - Arrays: union without duplicates, local elements first, then remote
      elements not already present, each in order of first appearance.

    The result shares no containers with either input.

    Raises:
        ResolutionError: If either input contains a reference cycle.
    """
    return _merge_mappings(local, remote, set(), set())


def manual(local: SyncRecord, remote: SyncRecord) -> SyncRecord:
    """Never resolves; hands both records back to a human operator."""
    error = ManualResolutionRequired(_serialize(local), _serialize(remote))
    logger.warning(error.message)
    raise error


STRATEGIES: Dict[ResolutionStrategy, Callable[[SyncRecord, SyncRecord], SyncRecord]] = {
    ResolutionStrategy.LAST_WRITE_WINS: last_write_wins,
    ResolutionStrategy.MERGE: merge,
    ResolutionStrategy.MANUAL: manual,
}


class ConflictResolver:
    """Dispatches a conflict to the strategy named at call time."""

    def __init__(self, strategies: Optional[Dict[ResolutionStrategy, Callable]] = None):
        self.strategies = dict(strategies) if strategies is not None else dict(STRATEGIES)

    def available_strategies(self) -> List[str]:
        return [strategy.value for strategy in self.strategies]

    def resolve(
        self,
        local: SyncRecord,
        remote: SyncRecord,
        strategy: Union[str, ResolutionStrategy, None] = ResolutionStrategy.LAST_WRITE_WINS
    ) -> SyncRecord:
        """
        Reconciles `local` and `remote` with the named strategy.

        Raises:
            ValidationError: If either record is not a mapping.
            ResolutionError: Status 400 for an unknown strategy; otherwise the
                strategy's own failure, or a generic "Failed to resolve
                conflict" wrapping any unexpected exception.
            ManualResolutionRequired: Always, for the manual strategy.
        """
        selected = ResolutionStrategy.from_name(strategy)
        resolve_fn = self.strategies.get(selected)
        if resolve_fn is None:
            raise ResolutionError("Invalid conflict resolution strategy", strategy=selected.value, status=400)
        if not isinstance(local, Mapping) or not isinstance(remote, Mapping):
            raise ValidationError("Both local and remote records must be mappings",
                                  operation="resolve_conflict", context={"strategy": selected.value})

        try:
            resolved = resolve_fn(local, remote)
        except ResolutionError:
            raise
        except Exception as e:
            logger.exception(f"Failed to resolve conflict with strategy '{selected.value}': {e}")
            raise ResolutionError("Failed to resolve conflict", strategy=selected.value,
                                  operation="resolve_conflict", original_error=e) from e

        logger.info(f"Conflict resolved (strategy: {selected.value})")
        return resolved

    def resolve_pair(self, pair: ConflictPair) -> SyncRecord:
        return self.resolve(pair.local, pair.remote, pair.strategy)


# --- Merge internals ---
#
# Each side keeps its own stack of the containers currently being walked;
# meeting one of them again on the same side means the input is cyclic.

def _enter(value: Any, active: Set[int]) -> None:
    if id(value) in active:
        raise ResolutionError("Cannot merge records containing a reference cycle", strategy="merge")
    active.add(id(value))


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _merge_mappings(local: Mapping, remote: Mapping, local_active: Set[int], remote_active: Set[int]) -> Dict[str, Any]:
    _enter(local, local_active)
    _enter(remote, remote_active)
    try:
        output: Dict[str, Any] = {}
        for key, local_value in local.items():
            if key in remote:
                output[key] = _merge_values(local_value, remote[key], local_active, remote_active)
            else:
                output[key] = _copy(local_value, local_active)
        for key, remote_value in remote.items():
            if key not in local:
                output[key] = _copy(remote_value, remote_active)
        return output
    finally:
        local_active.discard(id(local))
        remote_active.discard(id(remote))


def _merge_values(local_value: Any, remote_value: Any, local_active: Set[int], remote_active: Set[int]) -> Any:
    if isinstance(local_value, Mapping) and isinstance(remote_value, Mapping):
        return _merge_mappings(local_value, remote_value, local_active, remote_active)
    if _is_array(local_value) and _is_array(remote_value):
        return _union(local_value, remote_value, local_active, remote_active)
    # Local wins; the discarded remote value is still checked for cycles.
    _copy(remote_value, remote_active)
    return _copy(local_value, local_active)


def _union(local_items, remote_items, local_active: Set[int], remote_active: Set[int]) -> List[Any]:
    _enter(local_items, local_active)
    _enter(remote_items, remote_active)
    try:
        output: List[Any] = []
        candidates = [_copy(item, local_active) for item in local_items]
        candidates += [_copy(item, remote_active) for item in remote_items]
        for candidate in candidates:
            if not any(_same(candidate, existing) for existing in output):
                output.append(candidate)
        return output
    finally:
        local_active.discard(id(local_items))
        remote_active.discard(id(remote_items))


def _copy(value: Any, active: Set[int]) -> Any:
    """Deep-copies mappings and arrays, rejecting cycles."""
    if isinstance(value, Mapping):
        _enter(value, active)
        try:
            return {key: _copy(item, active) for key, item in value.items()}
        finally:
            active.discard(id(value))
    if _is_array(value):
        _enter(value, active)
        try:
            return [_copy(item, active) for item in value]
        finally:
            active.discard(id(value))
    return value


def _same(a: Any, b: Any) -> bool:
    # True == 1 in Python; keep booleans distinct from numbers at every depth.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(_same(a[key], b[key]) for key in a)
    if _is_array(a) and _is_array(b):
        return len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    return a == b


def _serialize(record: SyncRecord) -> str:
    """JSON when possible; records with non-JSON keys or cycles fall back to repr."""
    try:
        return json.dumps(record, default=str, sort_keys=False)
    except (TypeError, ValueError):
        return repr(record)

#
# End of conflict.py
#######################################################################################################################
