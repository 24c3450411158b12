"""Selection of mapping targets for a pull or push invocation."""
from typing import Dict, List, Sequence

from .errors import UsageError
from .models import MODE_PULL, MODE_PUSH, MappingEntry, MappingTarget, is_dev_secret_name


def _allows(entry: MappingEntry, mode: str) -> bool:
    if mode == MODE_PULL:
        return entry.allows_pull()
    if mode == MODE_PUSH:
        return entry.allows_push()
    return False


def select_mapping_names(mapping: Dict[str, MappingEntry], all_: bool,
                         names: Sequence[str], mode: str) -> List[str]:
    """
    Pick the manifest names an invocation operates on.

    Args:
        mapping: Manifest entries keyed by secret name
        all_: Select every entry whose mode allows the direction
        names: Explicit secret names (mutually exclusive with all_)
        mode: Direction, "pull" or "push"

    Returns:
        Sorted names for all_, otherwise de-duplicated names in first-seen order

    Raises:
        UsageError: On conflicting or empty selection, a non -dev name, a name
            missing from the manifest, or a name whose mode disallows the
            direction. Explicit selection never bypasses the mode gate.
    """
    if mode not in (MODE_PULL, MODE_PUSH):
        raise UsageError(f"unsupported sync direction: {mode}")
    if all_ and names:
        raise UsageError("cannot use --all with explicit secret names")
    if not all_ and not names:
        raise UsageError("no secrets specified (use --all or pass secret names)")

    if all_:
        selected = sorted(name for name, entry in mapping.items() if _allows(entry, mode))
        if not selected:
            raise UsageError(f"no mapping entries selected for {mode}")
        return selected

    selected = []
    seen = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        if not is_dev_secret_name(name):
            raise UsageError(f"refusing non-dev secret name: {name}")
        entry = mapping.get(name)
        if entry is None:
            raise UsageError(f"secret not found in mapping: {name}")
        if not _allows(entry, mode):
            raise UsageError(f"secret {name} not allowed in {mode} mode (mapping.mode={entry.mode})")
        selected.append(name)
    return selected


def select_targets(mapping: Dict[str, MappingEntry], all_: bool,
                   names: Sequence[str], mode: str) -> List[MappingTarget]:
    """Like select_mapping_names, paired with each name's manifest entry."""
    return [
        MappingTarget(name=name, entry=mapping[name])
        for name in select_mapping_names(mapping, all_, names, mode)
    ]
