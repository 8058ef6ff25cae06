"""HTTP access to the render web service match-trial and match-collection endpoints."""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, List, Optional

import requests
from PIL import Image

from .models import TrialParameters

log = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}
NO_CACHE_HEADERS = {"Cache-Control": "no-cache"}


class MatchTrialServiceError(Exception):
    def __init__(self, status_text: str, body: str = "") -> None:
        super().__init__(f"{status_text}: {body}")
        self.status_text = status_text
        self.body = body

    @property
    def message(self) -> str:
        return f"{self.status_text}: {self.body}"


class MatchTrialClient:
    def __init__(
        self,
        base_url: str,
        owner: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.owner = owner
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def match_trial_url(self) -> str:
        return f"{self.base_url}/owner/{self.owner}/matchTrial"

    def matches_url(self, owner: str, collection: str) -> str:
        return f"{self.base_url}/owner/{owner}/matchCollection/{collection}/matches"

    def get_trial(self, trial_id: str) -> Dict[str, Any]:
        response = self._request("GET", f"{self.match_trial_url}/{trial_id}", headers=NO_CACHE_HEADERS)
        return response.json()

    def create_trial(self, parameters: TrialParameters) -> str:
        response = self._request("POST", self.match_trial_url, json=parameters.to_json(), headers=JSON_HEADERS)
        trial_id = response.json()["id"]
        log.info(f"Created match trial {trial_id}")
        return trial_id

    def delete_trial(self, trial_id: str) -> None:
        self._request("DELETE", f"{self.match_trial_url}/{trial_id}")
        log.info(f"Deleted match trial {trial_id}")

    def save_matches(self, owner: str, collection: str, match_pairs: List[Dict[str, Any]]) -> None:
        self._request("PUT", self.matches_url(owner, collection), json=match_pairs, headers=JSON_HEADERS)
        log.info(f"Saved {len(match_pairs)} match pair(s) to {owner}/{collection}")

    def fetch_image(self, url: str) -> Image.Image:
        response = self._request("GET", url)
        image = Image.open(io.BytesIO(response.content))
        image.load()
        return image

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        log.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise MatchTrialServiceError("error", str(exc)) from exc
        if not response.ok:
            raise MatchTrialServiceError(response.reason or str(response.status_code), response.text)
        return response
