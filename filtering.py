"""In-memory search and facet filtering for listing views.

All functions here are pure: they never mutate their inputs and always keep the
relative order of the items they are given. Items may be mappings or objects;
fields are addressed by dotted paths (``"job.client_name"``) and anything that
cannot be resolved counts as a non-match rather than an error.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

ALL = "all"

_MISSING = object()


@dataclass(frozen=True)
class Facet:
    name: str
    field: str


@dataclass(frozen=True)
class FilterSpec:
    """Searchable fields and facets of one entity type.

    Facets are listed upstream first: the options of each facet depend on the
    selections of every facet before it.
    """

    search_fields: Tuple[str, ...]
    facets: Tuple[Facet, ...] = ()

    def facet(self, name: str) -> Optional[Facet]:
        for facet in self.facets:
            if facet.name == name:
                return facet
        return None

    def upstream_of(self, name: str) -> Tuple[Facet, ...]:
        for index, facet in enumerate(self.facets):
            if facet.name == name:
                return self.facets[:index]
        return ()


JOB_FILTER = FilterSpec(
    search_fields=("position_name", "client_name", "location", "tech_stack", "domain"),
    facets=(Facet("company", "client_name"), Facet("position", "position_name")),
)

USER_FILTER = FilterSpec(search_fields=("name", "email"))

APPLICATION_FILTER = FilterSpec(
    search_fields=("job.position_name", "job.client_name", "user.name", "user.email"),
    facets=(Facet("company", "job.client_name"), Facet("position", "job.position_name")),
)


def resolve(item: Any, path: str) -> Any:
    """Follow a dotted path through mappings and attributes; None if absent."""
    value = item
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, _MISSING)
            if value is _MISSING:
                return None
    return value


def _contains(value: Any, needle: str) -> bool:
    if isinstance(value, str):
        return needle in value.lower()
    if isinstance(value, (list, tuple)):
        return any(isinstance(entry, str) and needle in entry.lower() for entry in value)
    return False


def matches_query(item: Any, query: str, spec: FilterSpec) -> bool:
    if not query:
        return True
    needle = query.lower()
    return any(_contains(resolve(item, field), needle) for field in spec.search_fields)


def active_facets(facets: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {name: value for name, value in (facets or {}).items() if value != ALL}


def matches_facets(item: Any, facets: Optional[Mapping[str, str]], spec: FilterSpec) -> bool:
    """Exact match on every selected facet; names the spec does not declare are ignored."""
    active = active_facets(facets)
    for facet in spec.facets:
        selected = active.get(facet.name)
        if selected is None:
            continue
        value = resolve(item, facet.field)
        if value is None or value != selected:
            return False
    return True


def filter_items(
    items: Sequence[T],
    query: str = "",
    facets: Optional[Mapping[str, str]] = None,
    spec: FilterSpec = JOB_FILTER,
) -> List[T]:
    """Items matching every active facet and, if given, the free-text query."""
    return [
        item
        for item in items
        if matches_facets(item, facets, spec) and matches_query(item, query, spec)
    ]


def facet_options(
    items: Iterable[Any],
    name: str,
    selections: Optional[Mapping[str, str]] = None,
    spec: FilterSpec = JOB_FILTER,
) -> List[str]:
    """Sorted distinct values of a facet among items matching its upstream selections."""
    facet = spec.facet(name)
    if facet is None:
        return []
    upstream = {
        parent.name: (selections or {}).get(parent.name, ALL)
        for parent in spec.upstream_of(name)
    }
    values = set()
    for item in items:
        if not matches_facets(item, upstream, spec):
            continue
        value = resolve(item, facet.field)
        if isinstance(value, str) and value:
            values.add(value)
    return sorted(values)


def all_facet_options(
    items: Sequence[Any],
    selections: Optional[Mapping[str, str]] = None,
    spec: FilterSpec = JOB_FILTER,
) -> Dict[str, List[str]]:
    return {facet.name: facet_options(items, facet.name, selections, spec) for facet in spec.facets}


def reconcile_facets(
    items: Sequence[Any],
    selections: Optional[Mapping[str, str]],
    spec: FilterSpec = JOB_FILTER,
    start: Optional[str] = None,
) -> Dict[str, str]:
    """Reset every facet whose selected value is no longer among its options.

    Facets are visited upstream to downstream so a reset cascades. With
    ``start`` only that facet and the ones downstream of it are checked.
    """
    reconciled = dict(selections or {})
    facets = spec.facets
    if start is not None:
        facets = facets[len(spec.upstream_of(start)):] if spec.facet(start) else ()
    for facet in facets:
        selected = reconciled.get(facet.name, ALL)
        if selected == ALL:
            continue
        if selected not in facet_options(items, facet.name, reconciled, spec):
            reconciled[facet.name] = ALL
    return reconciled


def select_facet(
    items: Sequence[Any],
    selections: Optional[Mapping[str, str]],
    name: str,
    value: str,
    spec: FilterSpec = JOB_FILTER,
) -> Dict[str, str]:
    """Apply one facet selection and drop the selections it invalidates.

    The selected facet is checked too: a value outside its current options
    falls back to ``ALL`` instead of silently filtering everything out.
    """
    updated = dict(selections or {})
    updated[name] = value or ALL
    return reconcile_facets(items, updated, spec, start=name)
