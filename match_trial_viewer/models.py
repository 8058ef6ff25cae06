from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

NOT_INTERPOLATED = "NOT INTERPOLATED"
NO_CLIP = "NO CLIP"
AGGREGATED_CONSENSUS_SETS = "AGGREGATED_CONSENSUS_SETS"


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class SiftFeatureParameters:
    fd_size: int
    min_scale: float
    max_scale: float
    steps: int

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> SiftFeatureParameters:
        return cls(
            fd_size=data["fdSize"],
            min_scale=data["minScale"],
            max_scale=data["maxScale"],
            steps=data["steps"],
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "fdSize": self.fd_size,
            "minScale": self.min_scale,
            "maxScale": self.max_scale,
            "steps": self.steps,
        }


@dataclass(frozen=True)
class MatchDerivationParameters:
    model_type: str
    iterations: int
    max_epsilon: float
    min_inlier_ratio: float
    min_num_inliers: int
    max_trust: float
    filter: str
    full_scale_coverage_radius: Optional[float] = None
    # only used by the SIFT derivation
    rod: Optional[float] = None
    regularizer_model_type: Optional[str] = None
    interpolated_model_lambda: Optional[float] = None
    max_num_inliers: Optional[int] = None

    @property
    def is_interpolated(self) -> bool:
        return (
            self.regularizer_model_type is not None
            and self.regularizer_model_type != NOT_INTERPOLATED
            and self.interpolated_model_lambda is not None
        )

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> MatchDerivationParameters:
        return cls(
            model_type=data["matchModelType"],
            iterations=data["matchIterations"],
            max_epsilon=data["matchMaxEpsilon"],
            min_inlier_ratio=data["matchMinInlierRatio"],
            min_num_inliers=data["matchMinNumInliers"],
            max_trust=data["matchMaxTrust"],
            filter=data["matchFilter"],
            full_scale_coverage_radius=data.get("matchFullScaleCoverageRadius"),
            rod=data.get("matchRod"),
            regularizer_model_type=data.get("matchRegularizerModelType"),
            interpolated_model_lambda=data.get("matchInterpolatedModelLambda"),
            max_num_inliers=data.get("matchMaxNumInliers"),
        )

    def to_json(self) -> Dict[str, Any]:
        data = {
            "matchModelType": self.model_type,
            "matchIterations": self.iterations,
            "matchMaxEpsilon": self.max_epsilon,
            "matchMinInlierRatio": self.min_inlier_ratio,
            "matchMinNumInliers": self.min_num_inliers,
            "matchMaxTrust": self.max_trust,
            "matchFilter": self.filter,
            "matchFullScaleCoverageRadius": self.full_scale_coverage_radius,
            "matchRod": self.rod,
            "matchMaxNumInliers": self.max_num_inliers,
        }
        if self.is_interpolated:
            data["matchRegularizerModelType"] = self.regularizer_model_type
            data["matchInterpolatedModelLambda"] = self.interpolated_model_lambda
        return _drop_none(data)


@dataclass(frozen=True)
class FeatureAndMatchParameters:
    sift: SiftFeatureParameters
    match: MatchDerivationParameters
    p_clip_position: Optional[str] = None
    clip_pixels: Optional[int] = None

    @property
    def has_clip(self) -> bool:
        return self.p_clip_position not in (None, NO_CLIP) and self.clip_pixels is not None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> FeatureAndMatchParameters:
        return cls(
            sift=SiftFeatureParameters.from_json(data["siftFeatureParameters"]),
            match=MatchDerivationParameters.from_json(data["matchDerivationParameters"]),
            p_clip_position=data.get("pClipPosition"),
            clip_pixels=data.get("clipPixels"),
        )

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "siftFeatureParameters": self.sift.to_json(),
            "matchDerivationParameters": self.match.to_json(),
        }
        if self.has_clip:
            data["pClipPosition"] = self.p_clip_position
            data["clipPixels"] = self.clip_pixels
        return data


@dataclass(frozen=True)
class GeometricDescriptorParameters:
    number_of_neighbors: int
    redundancy: int
    significance: float
    sigma: float
    threshold: float
    localization: str
    look_for_minima: bool
    look_for_maxima: bool
    similar_orientation: bool
    full_scale_block_radius: float
    full_scale_non_max_suppression_radius: float
    gd_stored_match_weight: float

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> GeometricDescriptorParameters:
        return cls(
            number_of_neighbors=data["numberOfNeighbors"],
            redundancy=data["redundancy"],
            significance=data["significance"],
            sigma=data["sigma"],
            threshold=data["threshold"],
            localization=data["localization"],
            look_for_minima=bool(data.get("lookForMinima", False)),
            look_for_maxima=bool(data.get("lookForMaxima", False)),
            similar_orientation=bool(data.get("similarOrientation", False)),
            full_scale_block_radius=data["fullScaleBlockRadius"],
            full_scale_non_max_suppression_radius=data["fullScaleNonMaxSuppressionRadius"],
            gd_stored_match_weight=data["gdStoredMatchWeight"],
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "numberOfNeighbors": self.number_of_neighbors,
            "redundancy": self.redundancy,
            "significance": self.significance,
            "sigma": self.sigma,
            "threshold": self.threshold,
            "localization": self.localization,
            "lookForMinima": self.look_for_minima,
            "lookForMaxima": self.look_for_maxima,
            "similarOrientation": self.similar_orientation,
            "fullScaleBlockRadius": self.full_scale_block_radius,
            "fullScaleNonMaxSuppressionRadius": self.full_scale_non_max_suppression_radius,
            "gdStoredMatchWeight": self.gd_stored_match_weight,
        }


@dataclass(frozen=True)
class GeometricDescriptorAndMatchFilterParameters:
    render_scale: float
    render_with_filter: bool
    descriptor: GeometricDescriptorParameters
    match: MatchDerivationParameters
    render_filter_list_name: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> GeometricDescriptorAndMatchFilterParameters:
        match = MatchDerivationParameters.from_json(data["matchDerivationParameters"])
        return cls(
            render_scale=data["renderScale"],
            render_with_filter=bool(data.get("renderWithFilter", False)),
            descriptor=GeometricDescriptorParameters.from_json(data["geometricDescriptorParameters"]),
            match=replace(match, rod=None),
            render_filter_list_name=data.get("renderFilterListName"),
        )

    def to_json(self) -> Dict[str, Any]:
        data = {
            "geometricDescriptorParameters": self.descriptor.to_json(),
            "matchDerivationParameters": replace(self.match, rod=None).to_json(),
            "renderScale": self.render_scale,
            "renderWithFilter": self.render_with_filter,
            "renderFilterListName": self.render_filter_list_name or None,
        }
        return _drop_none(data)


@dataclass(frozen=True)
class TrialParameters:
    p_render_parameters_url: str
    q_render_parameters_url: str
    feature_and_match: FeatureAndMatchParameters
    fill_with_noise: Optional[bool] = None
    geometric: Optional[GeometricDescriptorAndMatchFilterParameters] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> TrialParameters:
        geometric = data.get("geometricDescriptorAndMatchFilterParameters")
        return cls(
            p_render_parameters_url=data["pRenderParametersUrl"],
            q_render_parameters_url=data["qRenderParametersUrl"],
            feature_and_match=FeatureAndMatchParameters.from_json(data["featureAndMatchParameters"]),
            fill_with_noise=data.get("fillWithNoise"),
            geometric=(
                GeometricDescriptorAndMatchFilterParameters.from_json(geometric) if geometric is not None else None
            ),
        )

    def to_json(self) -> Dict[str, Any]:
        data = {
            "featureAndMatchParameters": self.feature_and_match.to_json(),
            "pRenderParametersUrl": self.p_render_parameters_url,
            "qRenderParametersUrl": self.q_render_parameters_url,
            "fillWithNoise": self.fill_with_noise,
            "geometricDescriptorAndMatchFilterParameters": self.geometric.to_json() if self.geometric else None,
        }
        return _drop_none(data)


@dataclass
class MatchStats:
    p_feature_count: int
    p_feature_derivation_ms: int
    q_feature_count: int
    q_feature_derivation_ms: int
    consensus_set_sizes: List[int]
    match_derivation_ms: int
    consensus_set_delta_x_sds: List[float] = field(default_factory=list)
    consensus_set_delta_y_sds: List[float] = field(default_factory=list)
    aggregate_delta_x_sd: Optional[float] = None
    aggregate_delta_y_sd: Optional[float] = None
    overlapping_coverage_pixels: Optional[int] = None
    overlapping_image_pixels: Optional[int] = None

    @property
    def total_ms(self) -> int:
        return self.p_feature_derivation_ms + self.q_feature_derivation_ms + self.match_derivation_ms

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> MatchStats:
        return cls(
            p_feature_count=data.get("pFeatureCount", 0),
            p_feature_derivation_ms=data.get("pFeatureDerivationMilliseconds", 0),
            q_feature_count=data.get("qFeatureCount", 0),
            q_feature_derivation_ms=data.get("qFeatureDerivationMilliseconds", 0),
            consensus_set_sizes=list(data.get("consensusSetSizes", [])),
            match_derivation_ms=data.get("matchDerivationMilliseconds", 0),
            consensus_set_delta_x_sds=list(data.get("consensusSetDeltaXStandardDeviations", [])),
            consensus_set_delta_y_sds=list(data.get("consensusSetDeltaYStandardDeviations", [])),
            aggregate_delta_x_sd=data.get("aggregateDeltaXStandardDeviation"),
            aggregate_delta_y_sd=data.get("aggregateDeltaYStandardDeviation"),
            overlapping_coverage_pixels=data.get("overlappingCoveragePixels"),
            overlapping_image_pixels=data.get("overlappingImagePixels"),
        )

    def with_legacy_aggregate(self, match_filter: str) -> MatchStats:
        # older single-set trials were stored without aggregate values
        if (
            self.aggregate_delta_x_sd is None
            and match_filter != AGGREGATED_CONSENSUS_SETS
            and len(self.consensus_set_delta_x_sds) == 1
            and len(self.consensus_set_delta_y_sds) == 1
        ):
            return replace(
                self,
                aggregate_delta_x_sd=self.consensus_set_delta_x_sds[0],
                aggregate_delta_y_sd=self.consensus_set_delta_y_sds[0],
            )
        return self


@dataclass(frozen=True)
class ConsensusSetMatches:
    p: Sequence[Sequence[float]]
    q: Sequence[Sequence[float]]
    w: Sequence[float]

    def __post_init__(self) -> None:
        if len(self.p) != 2 or len(self.q) != 2:
            raise ValueError("Match coordinates must have exactly two rows (x and y).")
        size = len(self.w)
        lengths = {len(self.p[0]), len(self.p[1]), len(self.q[0]), len(self.q[1]), size}
        if lengths != {size}:
            raise ValueError("Consensus set p, q and w sequences must all have the same length.")

    def __len__(self) -> int:
        return len(self.w)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> ConsensusSetMatches:
        return cls(
            p=[list(row) for row in data["p"]],
            q=[list(row) for row in data["q"]],
            w=list(data["w"]),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "p": [list(row) for row in self.p],
            "q": [list(row) for row in self.q],
            "w": list(self.w),
        }


@dataclass
class TrialResult:
    parameters: TrialParameters
    stats: MatchStats
    matches: List[ConsensusSetMatches]
    trial_id: Optional[str] = None
    gd_stats: Optional[MatchStats] = None

    @property
    def match_count(self) -> int:
        return sum(len(consensus_set.w) for consensus_set in self.matches)

    @property
    def total_ms(self) -> int:
        total = self.stats.total_ms
        if self.parameters.geometric is not None and self.gd_stats is not None:
            total += self.gd_stats.total_ms
        return total

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> TrialResult:
        parameters = TrialParameters.from_json(data["parameters"])
        match_filter = parameters.feature_and_match.match.filter
        stats = MatchStats.from_json(data.get("stats", {})).with_legacy_aggregate(match_filter)
        gd_stats = data.get("gdStats")
        return cls(
            parameters=parameters,
            stats=stats,
            matches=[ConsensusSetMatches.from_json(item) for item in data.get("matches", [])],
            trial_id=data.get("id"),
            gd_stats=MatchStats.from_json(gd_stats) if gd_stats is not None else None,
        )


class CellState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    POSITIONED = "positioned"


@dataclass
class NavigationState:
    match_index: int = -1
    match_count: Optional[int] = None
    draw_match_lines: bool = False


@dataclass(frozen=True)
class CellPlacement:
    x: float
    y: float
    width: int
    height: int
    view_scale: float


@dataclass(frozen=True)
class TileRenderUrl:
    render_ws_base: str
    owner: str
    project: str
    stack: str
    tile_id: str
    group_id: str

    @property
    def view_base(self) -> str:
        return f"{self.render_ws_base}/view"
