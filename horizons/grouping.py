"""Grouping helpers behind the inventory tables, invoices and printed labels.

All functions accept any objects exposing ``harvest_room_id``,
``strain_id``, ``size_category_id`` and ``weight`` attributes, so they work
on ORM rows as well as plain namespaces.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

MISSING_KEY = "none"
UNKNOWN_NAME = "Unknown"

BAG_CATEGORIES = (
    "GREEN WASTE",
    "BUCKED",
    "FINAL TRIM",
    "BIGS",
    "SMALLS",
    "MICROS",
    "PT",
    "TRIM",
)


def format_weight(weight: Any) -> str:
    """Render a weight the way it appears in group keys: ``5``, ``5.5``."""
    value = float(weight or 0)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def group_key(bag: Any) -> str:
    parts = [
        bag.harvest_room_id,
        bag.strain_id,
        bag.size_category_id,
    ]
    head = "_".join(MISSING_KEY if part is None else str(part) for part in parts)
    return f"{head}_{format_weight(bag.weight)}"


@dataclass
class BagGroup:
    key: str
    harvest_room_id: Optional[int]
    strain_id: Optional[int]
    size_category_id: Optional[int]
    weight: float
    bags: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.bags)

    @property
    def total_weight(self) -> float:
        return round(sum(float(bag.weight or 0) for bag in self.bags), 3)


def group_bags(bags: Iterable[Any]) -> list[BagGroup]:
    """Group bags by (room, strain, size, weight), keeping first-seen order."""
    groups: dict[str, BagGroup] = {}
    for bag in bags:
        key = group_key(bag)
        group = groups.get(key)
        if group is None:
            group = BagGroup(
                key=key,
                harvest_room_id=bag.harvest_room_id,
                strain_id=bag.strain_id,
                size_category_id=bag.size_category_id,
                weight=float(bag.weight or 0),
            )
            groups[key] = group
        group.bags.append(bag)
    return list(groups.values())


def _name(lookup: Mapping[int, str], value: Optional[int]) -> str:
    if value is None:
        return UNKNOWN_NAME
    return lookup.get(value) or UNKNOWN_NAME


def describe_groups(
    groups: Iterable[BagGroup],
    rooms: Mapping[int, str],
    strains: Mapping[int, str],
    sizes: Mapping[int, str],
) -> list[dict]:
    return [
        {
            "key": group.key,
            "harvest_room_id": group.harvest_room_id,
            "harvest_room_name": _name(rooms, group.harvest_room_id),
            "strain_id": group.strain_id,
            "strain_name": _name(strains, group.strain_id),
            "size_category_id": group.size_category_id,
            "size_name": _name(sizes, group.size_category_id),
            "weight": group.weight,
            "count": group.count,
            "total_weight": group.total_weight,
            "bag_ids": [bag.id for bag in group.bags],
        }
        for group in groups
    ]


def label_rows(
    bags: Iterable[Any],
    rooms: Mapping[int, str],
    strains: Mapping[int, str],
    sizes: Mapping[int, str],
) -> list[dict]:
    return [
        {
            "bag_id": bag.id,
            "qr_code": bag.qr_code,
            "strain_name": _name(strains, bag.strain_id),
            "harvest_room_name": _name(rooms, bag.harvest_room_id),
            "size_name": _name(sizes, bag.size_category_id),
            "weight": float(bag.weight or 0),
        }
        for bag in bags
    ]


def _room_number(name: str) -> int:
    digits = re.sub(r"[^0-9]", "", name or "")
    return int(digits) if digits else 0


def sort_rooms_by_number(rooms: Iterable[Any], descending: bool = True) -> list:
    """Order harvest rooms by the number embedded in their name (H12 > H9)."""
    return sorted(rooms, key=lambda room: _room_number(room.name), reverse=descending)


def harvest_summary(
    harvest_room_id: int,
    strains: Iterable[Any],
    bags: Iterable[Any],
    sizes: Mapping[int, str],
) -> list[dict]:
    """Weight per bag category for every strain grown in one harvest room.

    ``strains`` must already be the strains associated with the room. Bags
    whose size name is not one of ``BAG_CATEGORIES`` are left out.
    """
    room_bags = [bag for bag in bags if bag.harvest_room_id == harvest_room_id]
    summary = []
    for strain in strains:
        weights = {category: 0.0 for category in BAG_CATEGORIES}
        for bag in room_bags:
            if bag.strain_id != strain.id:
                continue
            category = (sizes.get(bag.size_category_id) or "").strip().upper()
            if category in weights:
                weights[category] += float(bag.weight or 0)
        summary.append(
            {
                "strain_id": strain.id,
                "strain_name": strain.name,
                "category_weights": {k: round(v, 3) for k, v in weights.items()},
                "total_weight": round(sum(weights.values()), 3),
            }
        )
    return summary
