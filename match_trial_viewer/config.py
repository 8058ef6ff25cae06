from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from .core import DEFAULT_CELL_MARGIN, DEFAULT_VIEW_SCALE, format_scale, normalize_view_scale

TRIAL_ID_PARAM = "matchTrialId"
NEW_TRIAL_ID = "TBD"

GEOMETRY_RE = re.compile(r"^(\d+)x(\d+)\+(-?\d+)\+(-?\d+)$")


@dataclass
class ViewerConfig:
    base_url: str = "http://localhost:8080/render-ws/v1"
    owner: str = "flyTEM"
    trial_id: Optional[str] = None
    view_scale: float = DEFAULT_VIEW_SCALE
    cell_margin: int = DEFAULT_CELL_MARGIN
    save_to_owner: Optional[str] = None
    save_to_collection: Optional[str] = None
    request_timeout: Optional[float] = None

    @property
    def match_owner(self) -> str:
        return self.save_to_owner or self.owner

    @property
    def is_new_trial(self) -> bool:
        return self.trial_id in (None, "", NEW_TRIAL_ID)

    def with_query(self, query: str) -> ViewerConfig:
        values = dict(parse_qsl(query.lstrip("?"), keep_blank_values=True))
        config = self
        if TRIAL_ID_PARAM in values:
            config = replace(config, trial_id=values[TRIAL_ID_PARAM] or None)
        if "renderScale" in values:
            config = replace(config, view_scale=normalize_view_scale(values["renderScale"]))
        if values.get("owner"):
            config = replace(config, owner=values["owner"])
        if "saveToOwner" in values:
            config = replace(config, save_to_owner=values["saveToOwner"] or None)
        if "saveToCollection" in values:
            config = replace(config, save_to_collection=values["saveToCollection"] or None)
        return config

    @classmethod
    def from_query(cls, query: str, **kwargs) -> ViewerConfig:
        return cls(**kwargs).with_query(query)

    def to_query(self) -> str:
        items: List[Tuple[str, str]] = []
        if self.trial_id:
            items.append((TRIAL_ID_PARAM, self.trial_id))
        items.append(("owner", self.owner))
        items.append(("renderScale", format_scale(self.view_scale)))
        if self.save_to_owner:
            items.append(("saveToOwner", self.save_to_owner))
        if self.save_to_collection:
            items.append(("saveToCollection", self.save_to_collection))
        return urlencode(items)


def with_trial_id(query: str, trial_id: str) -> str:
    items = parse_qsl(query.lstrip("?"), keep_blank_values=True)
    updated = []
    found = False
    for key, value in items:
        if key == TRIAL_ID_PARAM:
            if found:
                continue
            value = trial_id
            found = True
        updated.append((key, value))
    if not found:
        updated.append((TRIAL_ID_PARAM, trial_id))
    return urlencode(updated)


def trial_id_from_query(query: str) -> Optional[str]:
    values = dict(parse_qsl(query.lstrip("?"), keep_blank_values=True))
    return values.get(TRIAL_ID_PARAM) or None


def parse_geometry(geometry: str) -> Tuple[int, int, int, int]:
    match = GEOMETRY_RE.match(geometry.strip())
    if not match:
        raise ValueError(f"Invalid geometry: {geometry}")
    width, height, x, y = (int(value) for value in match.groups())
    return width, height, x, y
