"""
Destination container resolution for a single tenant.

A tenant may configure a default archive container, explicit containers per
region, or both. For the regions requested in a run the precedence is:

1. an explicit, non-blank container for the region;
2. otherwise the tenant's non-blank default container;
3. otherwise the region is omitted and nothing is archived for it.

When a tenant has neither a default nor an explicit map, the result is empty.
"""

from typing import Iterable, Mapping


def is_blank(value: str | None) -> bool:
    """True for None, the empty string, or whitespace-only strings."""
    return value is None or not value.strip()


def resolve_containers(
    regions: Iterable[str],
    default: str | None,
    overrides: Mapping[str, str | None] | None,
) -> dict[str, str]:
    """
    Maps each requested region to the container its archives are written to.

    Args:
        regions: Regions being archived in this run.
        default: The tenant's default container, if any.
        overrides: The tenant's explicit region -> container map, if any.

    Returns:
        A region -> container mapping whose keys are a subset of `regions`.

    Examples:
        >>> resolve_containers(["DFW", "ORD"], "C1", {"DFW": "C2"})
        {'DFW': 'C2', 'ORD': 'C1'}

        >>> resolve_containers(["DFW", "ORD"], None, {"DFW": "C2", "ORD": ""})
        {'DFW': 'C2'}
    """
    if not is_blank(default):
        containers = {}
        for region in regions:
            explicit = overrides.get(region) if overrides is not None else None
            containers[region] = default if is_blank(explicit) else explicit
        return containers

    if overrides is None:
        return {}

    return {
        region: overrides[region]
        for region in regions
        if region in overrides and not is_blank(overrides[region])
    }
