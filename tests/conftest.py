from __future__ import annotations

import copy

import pytest
from PIL import Image

from match_trial_viewer.client import MatchTrialServiceError

P_URL = (
    "http://render:8080/render-ws/v1/owner/flyTEM/project/FAFB00/stack/v12_acquire"
    "/tile/151215054802105048.3761.0/render-parameters?scale=0.4"
)
Q_URL = (
    "http://render:8080/render-ws/v1/owner/flyTEM/project/FAFB00/stack/v12_acquire"
    "/tile/151215054802104048.3761.0/render-parameters?scale=0.4"
)
IMAGE_SIZE = (50, 40)


class ManualScheduler:
    def __init__(self) -> None:
        self.pending = []
        self.timers = []

    def call_later(self, delay_ms, callback):
        self.timers.append((delay_ms, callback))

    def submit(self, work, on_success, on_error):
        self.pending.append((work, on_success, on_error))

    def run_next(self) -> bool:
        if not self.pending:
            return False
        work, on_success, on_error = self.pending.pop(0)
        try:
            result = work()
        except Exception as exc:
            on_error(exc)
        else:
            on_success(result)
        return True

    def run_all(self) -> None:
        while self.run_next():
            pass

    def run_timers(self) -> None:
        timers, self.timers = self.timers, []
        for _, callback in timers:
            callback()


class FakeView:
    def __init__(self) -> None:
        self.events = []
        self.errors = []
        self.match_info = []
        self.navigated = []
        self.opened = []
        self.populated = []
        self.saved = []

    def show_trial(self, result, render_scale):
        self.events.append(("show_trial", result.trial_id, render_scale))

    def show_match_info(self, text):
        self.match_info.append(text)

    def show_delete_control(self, visible):
        self.events.append(("delete_control", visible))

    def show_trial_deleted(self, trial_id):
        self.events.append(("deleted", trial_id))

    def show_error(self, text):
        self.errors.append(text)

    def show_saved(self, collection, tile_pair_url):
        self.saved.append((collection, tile_pair_url))

    def set_trial_running(self, running):
        self.events.append(("running", running))

    def set_draw_lines_label(self, label):
        self.events.append(("lines_label", label))

    def populate_form(self, parameters):
        self.populated.append(parameters)

    def navigate(self, query):
        self.navigated.append(query)

    def open_viewer_window(self, query, on_loaded):
        self.opened.append((query, on_loaded))


class FakeClient:
    def __init__(self, trials=None) -> None:
        self.trials = dict(trials or {})
        self.failing_images = set()
        self.created = []
        self.deleted = []
        self.saved = []
        self.image_requests = []
        self.create_error = None
        self.next_trial_id = "5f2a0c9e1b3d4a6f7e8d9c0b"

    def get_trial(self, trial_id):
        if trial_id not in self.trials:
            raise MatchTrialServiceError("Not Found", f"match trial {trial_id} does not exist")
        return copy.deepcopy(self.trials[trial_id])

    def create_trial(self, parameters):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(parameters)
        return self.next_trial_id

    def delete_trial(self, trial_id):
        self.deleted.append(trial_id)

    def save_matches(self, owner, collection, match_pairs):
        self.saved.append((owner, collection, match_pairs))

    def fetch_image(self, url):
        self.image_requests.append(url)
        if any(marker in url for marker in self.failing_images):
            raise MatchTrialServiceError("Internal Server Error", "render failed")
        color = (200, 0, 0) if "105048" in url else (0, 0, 200)
        return Image.new("RGB", IMAGE_SIZE, color)


def make_parameters_json(p_url=P_URL, q_url=Q_URL):
    return {
        "pRenderParametersUrl": p_url,
        "qRenderParametersUrl": q_url,
        "featureAndMatchParameters": {
            "siftFeatureParameters": {"fdSize": 8, "minScale": 0.125, "maxScale": 1.0, "steps": 5},
            "matchDerivationParameters": {
                "matchModelType": "AFFINE",
                "matchIterations": 1000,
                "matchMaxEpsilon": 20.0,
                "matchMinInlierRatio": 0.0,
                "matchMinNumInliers": 10,
                "matchMaxTrust": 3.0,
                "matchFilter": "SINGLE_SET",
                "matchRod": 0.92,
            },
        },
    }


def make_trial_json(trial_id="abc", matches=None, p_url=P_URL, q_url=Q_URL):
    if matches is None:
        matches = [{"p": [[10, 20], [5, 15]], "q": [[12, 22], [6, 16]], "w": [1, 1]}]
    return {
        "id": trial_id,
        "parameters": make_parameters_json(p_url, q_url),
        "stats": {
            "pFeatureCount": 1200,
            "pFeatureDerivationMilliseconds": 700,
            "qFeatureCount": 1150,
            "qFeatureDerivationMilliseconds": 650,
            "consensusSetSizes": [len(item["w"]) for item in matches],
            "matchDerivationMilliseconds": 40,
            "consensusSetDeltaXStandardDeviations": [1.5 for _ in matches],
            "consensusSetDeltaYStandardDeviations": [2.5 for _ in matches],
        },
        "matches": matches,
    }


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def view():
    return FakeView()


@pytest.fixture
def trial_json():
    return make_trial_json()


@pytest.fixture
def client(trial_json):
    return FakeClient({"abc": trial_json})


@pytest.fixture
def make_trial():
    return make_trial_json
