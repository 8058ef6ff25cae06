from __future__ import annotations

import math
import re
from typing import Any, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from PIL import Image, ImageDraw

from .models import CellPlacement, ConsensusSetMatches, TileRenderUrl, TrialParameters

RENDER_PARAMETERS = "render-parameters"
JPEG_IMAGE = "jpeg-image"
DEFAULT_VIEW_SCALE = 0.2
DEFAULT_CELL_MARGIN = 4

MATCH_RADIUS = 3
MATCH_LINE_WIDTH = 1
HIGHLIGHT_COLOR = "#00ff00"
SINGLE_SET_PALETTE = ("#00ff00", "#f48342", "#42eef4", "#f442f1")
# adapted from https://sashat.me/2017/01/11/list-of-20-simple-distinct-colors/
CONSENSUS_SET_PALETTE = (
    "#4363d8", "#e6194b", "#3cb44b", "#ffe119",
    "#f58231", "#911eb4", "#46f0f0", "#f032e6",
    "#bcf60c", "#fabebe", "#008080", "#e6beff",
    "#9a6324", "#800000", "#aaffc3",
)

TILE_RENDER_URL_RE = re.compile(
    r"(.*/render-ws).*/owner/([^/]+)/project/([^/]+)/stack/([^/]+)"
    r"/tile/([0-9]+\.([0-9]+\.[0-9]+))/render-parameters.*"
)
TILE_PAIR_RENDER_SCALE = 0.1


class Surface(Protocol):
    def resize(self, width: int, height: int) -> None: ...

    def clear(self) -> None: ...

    def draw_image(self, image: Image.Image, x: float, y: float) -> None: ...

    def stroke_circle(self, x: float, y: float, radius: float, color: str) -> None: ...

    def stroke_line(self, x0: float, y0: float, x1: float, y1: float, color: str) -> None: ...


class PilSurface:
    """Drawing surface backed by an in-memory RGB image."""

    def __init__(self, width: int = 1, height: int = 1, background: str = "#000000") -> None:
        self.background = background
        self.image = Image.new("RGB", (max(width, 1), max(height, 1)), background)
        self._draw = ImageDraw.Draw(self.image)

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def resize(self, width: int, height: int) -> None:
        self.image = Image.new("RGB", (max(int(width), 1), max(int(height), 1)), self.background)
        self._draw = ImageDraw.Draw(self.image)

    def clear(self) -> None:
        width, height = self.image.size
        self._draw.rectangle((0, 0, width, height), fill=self.background)

    def draw_image(self, image: Image.Image, x: float, y: float) -> None:
        rgb = image if image.mode == "RGB" else image.convert("RGB")
        self.image.paste(rgb, (int(round(x)), int(round(y))))

    def stroke_circle(self, x: float, y: float, radius: float, color: str) -> None:
        self._draw.ellipse((x - radius, y - radius, x + radius, y + radius), outline=color, width=MATCH_LINE_WIDTH)

    def stroke_line(self, x0: float, y0: float, x1: float, y1: float, color: str) -> None:
        self._draw.line((x0, y0, x1, y1), fill=color, width=MATCH_LINE_WIDTH)

    def save(self, path: str) -> None:
        self.image.save(path)


def normalize_view_scale(value: Any) -> float:
    try:
        scale = float(value)
    except (TypeError, ValueError):
        return DEFAULT_VIEW_SCALE
    if math.isnan(scale):
        return DEFAULT_VIEW_SCALE
    return scale


def format_scale(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def render_scale_of(render_parameters_url: str) -> float:
    query = dict(parse_qsl(urlsplit(render_parameters_url).query, keep_blank_values=True))
    try:
        scale = float(query.get("scale", ""))
    except ValueError:
        return 1.0
    return 1.0 if math.isnan(scale) else scale


def image_url_for(render_parameters_url: str, view_scale: float) -> str:
    parts = urlsplit(render_parameters_url.replace(RENDER_PARAMETERS, JPEG_IMAGE))
    query: List[Tuple[str, str]] = []
    scale_set = False
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == "scale":
            if scale_set:
                continue
            value = format_scale(view_scale)
            scale_set = True
        query.append((key, value))
    if not scale_set:
        query.append(("scale", format_scale(view_scale)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def has_render_parameters_urls(parameters: TrialParameters) -> bool:
    return (
        RENDER_PARAMETERS in parameters.p_render_parameters_url
        and RENDER_PARAMETERS in parameters.q_render_parameters_url
    )


def parse_tile_render_url(url: str) -> TileRenderUrl:
    match = TILE_RENDER_URL_RE.match(url.strip())
    if not match:
        raise ValueError(f"Cannot parse tile render URL: {url}")
    base, owner, project, stack, tile_id, group_id = match.groups()
    return TileRenderUrl(
        render_ws_base=base,
        owner=owner,
        project=project,
        stack=stack,
        tile_id=tile_id,
        group_id=group_id,
    )


def match_pair_record(p_tile: TileRenderUrl, q_tile: TileRenderUrl, matches: ConsensusSetMatches) -> dict:
    return {
        "pGroupId": p_tile.group_id,
        "pId": p_tile.tile_id,
        "qGroupId": q_tile.group_id,
        "qId": q_tile.tile_id,
        "matches": matches.to_json(),
    }


def tile_pair_view_url(
    p_tile: TileRenderUrl,
    q_tile: TileRenderUrl,
    match_owner: str,
    match_collection: str,
    render_scale: float = TILE_PAIR_RENDER_SCALE,
) -> str:
    query = urlencode(
        [
            ("renderScale", format_scale(render_scale)),
            ("renderStackOwner", p_tile.owner),
            ("renderStackProject", p_tile.project),
            ("renderStack", p_tile.stack),
            ("matchOwner", match_owner),
            ("matchCollection", match_collection),
            ("pGroupId", p_tile.group_id),
            ("pId", p_tile.tile_id),
            ("qGroupId", q_tile.group_id),
            ("qId", q_tile.tile_id),
        ]
    )
    return f"{p_tile.view_base}/tile-pair.html?{query}"


def cell_origin(row: int, column: int, width: int, height: int, margin: int) -> tuple[int, int]:
    x = column * (width + margin) + margin
    y = row * (height + margin) + margin
    return x, y


def to_screen(coordinate: float, view_scale: float, origin: float) -> float:
    return coordinate * view_scale + origin


def from_screen(screen: float, view_scale: float, origin: float) -> float:
    if view_scale == 0:
        raise ValueError("View scale must be non-zero.")
    return (screen - origin) / view_scale


def canvas_size(p: CellPlacement, q: CellPlacement, margin: int) -> tuple[int, int]:
    width = q.x + q.width + margin
    height = margin + max(p.height, q.height)
    return int(math.ceil(width)), int(math.ceil(height))


def count_matches(consensus_sets: Sequence[ConsensusSetMatches]) -> int:
    return sum(len(consensus_set.w) for consensus_set in consensus_sets)


def next_match_index(index: int, delta: int, count: int) -> int:
    if count <= 0:
        raise ValueError("Cannot navigate a trial without matches.")
    if index < 0 and delta < 0:
        index = 0
    return (index + delta) % count


def locate_match(consensus_sets: Sequence[ConsensusSetMatches], index: int) -> tuple[int, int]:
    offset = 0
    for set_index, consensus_set in enumerate(consensus_sets):
        size = len(consensus_set.w)
        if index < offset + size:
            return set_index, index - offset
        offset += size
    raise IndexError(f"Match index {index} is out of range for {offset} matches.")


def match_color(set_index: int, match_index: int, set_count: int) -> str:
    if set_count == 1:
        return SINGLE_SET_PALETTE[match_index % len(SINGLE_SET_PALETTE)]
    return CONSENSUS_SET_PALETTE[set_index % len(CONSENSUS_SET_PALETTE)]


def match_screen_points(
    consensus_set: ConsensusSetMatches,
    index: int,
    p: CellPlacement,
    q: CellPlacement,
) -> tuple[float, float, float, float]:
    px = to_screen(consensus_set.p[0][index], p.view_scale, p.x)
    py = to_screen(consensus_set.p[1][index], p.view_scale, p.y)
    qx = to_screen(consensus_set.q[0][index], q.view_scale, q.x)
    qy = to_screen(consensus_set.q[1][index], q.view_scale, q.y)
    return px, py, qx, qy


def draw_match(
    surface: Surface,
    consensus_set: ConsensusSetMatches,
    index: int,
    p: CellPlacement,
    q: CellPlacement,
    color: str,
    draw_lines: bool,
) -> None:
    px, py, qx, qy = match_screen_points(consensus_set, index, p, q)
    if draw_lines:
        surface.stroke_line(px, py, qx, qy, color)
    else:
        surface.stroke_circle(px, py, MATCH_RADIUS, color)
        surface.stroke_circle(qx, qy, MATCH_RADIUS, color)


def draw_all_matches(
    surface: Surface,
    consensus_sets: Sequence[ConsensusSetMatches],
    p: CellPlacement,
    q: CellPlacement,
    draw_lines: bool,
) -> str:
    set_count = len(consensus_sets)
    for set_index, consensus_set in enumerate(consensus_sets):
        for index in range(len(consensus_set.w)):
            color = match_color(set_index, index, set_count)
            draw_match(surface, consensus_set, index, p, q, color, draw_lines)
    return f"{count_matches(consensus_sets)} total matches"


def draw_selected_match(
    surface: Surface,
    consensus_sets: Sequence[ConsensusSetMatches],
    match_index: int,
    p: CellPlacement,
    q: CellPlacement,
    draw_lines: bool,
) -> str:
    set_index, local_index = locate_match(consensus_sets, match_index)
    draw_match(surface, consensus_sets[set_index], local_index, p, q, HIGHLIGHT_COLOR, draw_lines)
    return f"match {match_index + 1} of {count_matches(consensus_sets)}"


def paint_cells(
    surface: Surface,
    p_image: Image.Image,
    q_image: Image.Image,
    p: CellPlacement,
    q: CellPlacement,
    margin: int,
) -> tuple[int, int]:
    width, height = canvas_size(p, q, margin)
    surface.resize(width, height)
    surface.clear()
    surface.draw_image(p_image, p.x, p.y)
    surface.draw_image(q_image, q.x, q.y)
    return width, height


def render_trial_view(
    surface: Surface,
    p_image: Image.Image,
    q_image: Image.Image,
    p: CellPlacement,
    q: CellPlacement,
    consensus_sets: Sequence[ConsensusSetMatches],
    margin: int,
    match_index: int = -1,
    draw_lines: bool = False,
) -> Optional[str]:
    paint_cells(surface, p_image, q_image, p, q, margin)
    if count_matches(consensus_sets) == 0:
        return None
    if match_index < 0:
        return draw_all_matches(surface, consensus_sets, p, q, draw_lines)
    return draw_selected_match(surface, consensus_sets, match_index, p, q, draw_lines)
