"""Trial session: loads a match trial, positions its two images and draws its matches.

All methods run on the UI thread. Blocking work (HTTP requests, image decoding)
is handed to the scheduler, which calls back on the UI thread.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Protocol

from PIL import Image

from .client import MatchTrialClient, MatchTrialServiceError
from .config import NEW_TRIAL_ID, ViewerConfig, with_trial_id
from .core import (
    PilSurface,
    Surface,
    canvas_size,
    cell_origin,
    draw_all_matches,
    draw_selected_match,
    has_render_parameters_urls,
    image_url_for,
    match_pair_record,
    next_match_index,
    normalize_view_scale,
    parse_tile_render_url,
    render_scale_of,
    render_trial_view,
    tile_pair_view_url,
)
from .form import parse_trial_parameters
from .handoff import HandoffOutcome, HandoffPort, TrialHandoff
from .models import CellPlacement, CellState, NavigationState, TrialParameters, TrialResult

log = logging.getLogger(__name__)

RENDER_URL_REQUIRED = 'render parameters URLs must contain "render-parameters"'
COLLECTION_REQUIRED = "alpha version of save feature requires saveToCollection query parameter to be defined"
SINGLE_SET_REQUIRED = "trial must have one and only one set of matches to save"
UNPARSEABLE_RENDER_URL = "alpha version of save feature cannot parse render URL(s) for this match trial"


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None: ...

    def submit(
        self,
        work: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> None: ...


class ImmediateScheduler:
    """Runs work inline; used for headless snapshot export."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        callback()

    def submit(
        self,
        work: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        try:
            result = work()
        except Exception as exc:
            on_error(exc)
            return
        on_success(result)


class TrialView(Protocol):
    def show_trial(self, result: TrialResult, render_scale: float) -> None: ...

    def show_match_info(self, text: str) -> None: ...

    def show_delete_control(self, visible: bool) -> None: ...

    def show_trial_deleted(self, trial_id: str) -> None: ...

    def show_error(self, text: str) -> None: ...

    def show_saved(self, collection: str, tile_pair_url: str) -> None: ...

    def set_trial_running(self, running: bool) -> None: ...

    def set_draw_lines_label(self, label: str) -> None: ...

    def populate_form(self, parameters: TrialParameters) -> None: ...

    def navigate(self, query: str) -> None: ...

    def open_viewer_window(self, query: str, on_loaded: Callable[[HandoffPort], None]) -> None: ...


class SessionState(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class ImageCell:
    def __init__(
        self,
        render_parameters_url: str,
        row: int,
        column: int,
        view_scale: float,
        cell_margin: int,
        fetch_image: Callable[[str], Image.Image],
        scheduler: Scheduler,
        on_positioned: Optional[Callable[[ImageCell], None]] = None,
    ) -> None:
        self.row = row
        self.column = column
        self.view_scale = normalize_view_scale(view_scale)
        self.cell_margin = cell_margin
        self.render_scale = render_scale_of(render_parameters_url)
        self.image_url = image_url_for(render_parameters_url, self.view_scale)
        self.image: Optional[Image.Image] = None
        self.x = -1
        self.y = -1
        self.state = CellState.UNLOADED
        self._fetch_image = fetch_image
        self._scheduler = scheduler
        self._on_positioned = on_positioned

    @property
    def positioned(self) -> bool:
        return self.state is CellState.POSITIONED

    @property
    def width(self) -> int:
        return self.image.size[0] if self.image is not None else 0

    @property
    def height(self) -> int:
        return self.image.size[1] if self.image is not None else 0

    def load_image(self) -> None:
        if self.state is not CellState.UNLOADED:
            return
        self.state = CellState.LOADING
        self._scheduler.submit(lambda: self._fetch_image(self.image_url), self._on_load, self._on_error)

    def _on_load(self, image: Image.Image) -> None:
        self.image = image
        self.state = CellState.LOADED
        self.position_image()

    def _on_error(self, exc: BaseException) -> None:
        log.warning(f"Failed to load image {self.image_url}: {exc}")

    def position_image(self) -> None:
        self.x, self.y = cell_origin(self.row, self.column, self.width, self.height, self.cell_margin)
        self.state = CellState.POSITIONED
        log.debug(f"Positioned cell ({self.row}, {self.column}) at ({self.x}, {self.y})")
        if self._on_positioned is not None:
            self._on_positioned(self)

    def placement(self) -> CellPlacement:
        if not self.positioned:
            raise RuntimeError("Image cell has not been positioned yet.")
        return CellPlacement(x=self.x, y=self.y, width=self.width, height=self.height, view_scale=self.view_scale)

    def draw_loaded_image(self, surface: Surface) -> None:
        surface.draw_image(self.image, self.x, self.y)


class CellPairBarrier:
    """Runs deferred actions in request order once every expected cell has arrived."""

    def __init__(self, expected: int = 2) -> None:
        self._remaining = expected
        self._pending: List[Callable[[], None]] = []

    @property
    def ready(self) -> bool:
        return self._remaining == 0

    def arrive(self) -> None:
        if self._remaining == 0:
            return
        self._remaining -= 1
        if self.ready and self._pending:
            pending, self._pending = self._pending, []
            log.debug(f"Both cells positioned, running {len(pending)} pending draws")
            for action in pending:
                action()

    def when_ready(self, action: Callable[[], None]) -> None:
        if self.ready:
            action()
        else:
            self._pending.append(action)


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, MatchTrialServiceError):
        return exc.message
    return str(exc)


class TrialSession:
    def __init__(
        self,
        config: ViewerConfig,
        client: MatchTrialClient,
        scheduler: Scheduler,
        surface: Surface,
        view: TrialView,
    ) -> None:
        self.config = config
        self.client = client
        self.scheduler = scheduler
        self.surface = surface
        self.view = view
        self.view_scale = normalize_view_scale(config.view_scale)
        self.cell_margin = config.cell_margin
        self.query = config.to_query()
        self.trial_id: Optional[str] = config.trial_id
        self.state = SessionState.EMPTY
        self.result: Optional[TrialResult] = None
        self.navigation = NavigationState()
        self.p_cell: Optional[ImageCell] = None
        self.q_cell: Optional[ImageCell] = None
        self.handoffs: List[TrialHandoff] = []
        self._barrier: Optional[CellPairBarrier] = None
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def load_trial(self, trial_id: str) -> None:
        self._generation += 1
        generation = self._generation
        self.surface.clear()
        self.result = None
        self.navigation = NavigationState()
        self.p_cell = None
        self.q_cell = None
        self._barrier = None
        self.trial_id = trial_id
        self.state = SessionState.LOADING
        log.info(f"Loading match trial {trial_id}")
        self.scheduler.submit(
            lambda: self.client.get_trial(trial_id),
            lambda data: self._on_trial_fetched(generation, data),
            lambda exc: self._on_trial_fetch_failed(generation, trial_id, exc),
        )

    def _on_trial_fetched(self, generation: int, data: Mapping[str, Any]) -> None:
        if generation != self._generation:
            log.debug(f"Dropping stale trial response for load {generation}")
            return
        try:
            result = TrialResult.from_json(dict(data))
        except (KeyError, TypeError, ValueError) as exc:
            log.error(f"Malformed match trial {self.trial_id}: {exc}")
            self.state = SessionState.FAILED
            return
        self.load_trial_results(result)

    def _on_trial_fetch_failed(self, generation: int, trial_id: str, exc: BaseException) -> None:
        if generation != self._generation:
            return
        log.error(f"Failed to load match trial {trial_id}: {_error_text(exc)}")
        self.state = SessionState.FAILED

    def load_trial_results(self, result: TrialResult) -> None:
        generation = self._generation
        barrier = CellPairBarrier(expected=2)
        self._barrier = barrier
        self.result = result

        def on_positioned(cell: ImageCell) -> None:
            if generation == self._generation:
                barrier.arrive()

        parameters = result.parameters
        self.p_cell = ImageCell(
            parameters.p_render_parameters_url,
            0,
            0,
            self.view_scale,
            self.cell_margin,
            self.client.fetch_image,
            self.scheduler,
            on_positioned,
        )
        self.q_cell = ImageCell(
            parameters.q_render_parameters_url,
            0,
            1,
            self.view_scale,
            self.cell_margin,
            self.client.fetch_image,
            self.scheduler,
            on_positioned,
        )
        self.navigation.match_count = result.match_count
        self.state = SessionState.LOADED
        log.info(f"Loaded match trial {self.trial_id} with {result.match_count} matches")

        self.view.show_trial(result, self.p_cell.render_scale)
        self.view.show_delete_control(True)
        self.draw_all_matches()

        self.p_cell.load_image()
        self.q_cell.load_image()

    def draw_all_matches(self) -> None:
        self._request_draw(None)

    def draw_selected_matches(self, delta: int) -> None:
        self._request_draw(delta)

    def _request_draw(self, delta: Optional[int]) -> None:
        if self._barrier is None:
            return
        generation = self._generation

        def draw() -> None:
            if generation == self._generation:
                self._draw(delta)

        self._barrier.when_ready(draw)

    def _draw(self, delta: Optional[int]) -> None:
        p = self.p_cell.placement()
        q = self.q_cell.placement()
        self.surface.resize(*canvas_size(p, q, self.cell_margin))
        self.surface.clear()
        self.p_cell.draw_loaded_image(self.surface)
        self.q_cell.draw_loaded_image(self.surface)

        count = self.navigation.match_count
        if not count:
            return
        consensus_sets = self.result.matches
        draw_lines = self.navigation.draw_match_lines
        if delta is None:
            self.navigation.match_index = -1
            text = draw_all_matches(self.surface, consensus_sets, p, q, draw_lines)
        else:
            self.navigation.match_index = next_match_index(self.navigation.match_index, delta, count)
            text = draw_selected_match(self.surface, consensus_sets, self.navigation.match_index, p, q, draw_lines)
        self.view.show_match_info(text)

    def toggle_lines_and_points(self) -> None:
        self.navigation.draw_match_lines = not self.navigation.draw_match_lines
        self.draw_all_matches()
        self.view.set_draw_lines_label("Points" if self.navigation.draw_match_lines else "Lines")

    def export_snapshot(self, path: str) -> PilSurface:
        if self.p_cell is None or self.q_cell is None or not (self.p_cell.positioned and self.q_cell.positioned):
            raise RuntimeError("Both trial images must be loaded before exporting a snapshot.")
        surface = PilSurface()
        render_trial_view(
            surface,
            self.p_cell.image,
            self.q_cell.image,
            self.p_cell.placement(),
            self.q_cell.placement(),
            self.result.matches,
            self.cell_margin,
            match_index=self.navigation.match_index,
            draw_lines=self.navigation.draw_match_lines,
        )
        surface.save(path)
        log.info(f"Saved trial snapshot to {path}")
        return surface

    def delete_trial(self) -> None:
        trial_id = self.trial_id
        if not trial_id:
            return

        def on_deleted(_: Any) -> None:
            log.info(f"Match trial {trial_id} deleted")
            self.view.show_trial_deleted(trial_id)
            self.view.show_delete_control(False)

        def on_failed(exc: BaseException) -> None:
            log.error(f"Failed to delete match trial {trial_id}: {_error_text(exc)}")

        self.scheduler.submit(lambda: self.client.delete_trial(trial_id), on_deleted, on_failed)

    def run_trial(self, form_values: Mapping[str, Any]) -> Optional[TrialParameters]:
        try:
            parameters = parse_trial_parameters(form_values)
        except ValueError as exc:
            self.view.show_error(str(exc))
            return None
        if not has_render_parameters_urls(parameters):
            self.view.show_error(RENDER_URL_REQUIRED)
            return None

        self.view.show_error("")
        self.view.set_trial_running(True)
        self.scheduler.submit(
            lambda: self.client.create_trial(parameters),
            self._on_trial_created,
            self._on_trial_create_failed,
        )
        return parameters

    def _on_trial_created(self, trial_id: str) -> None:
        self.trial_id = trial_id
        self.query = with_trial_id(self.query, trial_id)
        self.view.set_trial_running(False)
        self.view.navigate(self.query)

    def _on_trial_create_failed(self, exc: BaseException) -> None:
        log.error(f"Failed to create match trial: {_error_text(exc)}")
        self.view.show_error(_error_text(exc))
        self.view.set_trial_running(False)

    def open_new_trial_window(self) -> None:
        query = with_trial_id(self.query, NEW_TRIAL_ID)
        self.view.open_viewer_window(query, self.start_handoff)

    def start_handoff(self, port: HandoffPort) -> Optional[TrialHandoff]:
        if self.result is None:
            return None
        self.handoffs = [pending for pending in self.handoffs if pending.outcome is HandoffOutcome.PENDING]
        handoff = TrialHandoff(port, self.result.parameters, self.scheduler)
        self.handoffs.append(handoff)
        handoff.start()
        return handoff

    def init_new_trial_form(self, parameters: TrialParameters) -> None:
        self.view.populate_form(parameters)

    def save_trial_results_to_collection(self, owner: Optional[str], collection: Optional[str]) -> bool:
        if not collection:
            self.view.show_error(COLLECTION_REQUIRED)
            return False
        if self.result is None or len(self.result.matches) != 1:
            self.view.show_error(SINGLE_SET_REQUIRED)
            return False
        parameters = self.result.parameters
        try:
            p_tile = parse_tile_render_url(parameters.p_render_parameters_url)
            q_tile = parse_tile_render_url(parameters.q_render_parameters_url)
        except ValueError:
            self.view.show_error(UNPARSEABLE_RENDER_URL)
            return False

        owner = owner or self.config.match_owner
        record = match_pair_record(p_tile, q_tile, self.result.matches[0])
        tile_pair_url = tile_pair_view_url(p_tile, q_tile, owner, collection)
        self.view.show_error("")

        def on_saved(_: Any) -> None:
            self.view.show_saved(collection, tile_pair_url)

        def on_failed(exc: BaseException) -> None:
            log.error(f"Failed to save matches to {owner}/{collection}: {_error_text(exc)}")
            self.view.show_error(_error_text(exc))

        self.scheduler.submit(lambda: self.client.save_matches(owner, collection, [record]), on_saved, on_failed)
        return True
