import pytest

from match_trial_viewer.models import (
    NOT_INTERPOLATED,
    ConsensusSetMatches,
    GeometricDescriptorAndMatchFilterParameters,
    MatchDerivationParameters,
    MatchStats,
    TrialParameters,
    TrialResult,
)

GEOMETRIC_JSON = {
    "renderScale": 0.25,
    "renderWithFilter": True,
    "geometricDescriptorParameters": {
        "numberOfNeighbors": 3,
        "redundancy": 1,
        "significance": 2.0,
        "sigma": 2.04,
        "threshold": 0.008,
        "localization": "THREE_D_QUADRATIC",
        "lookForMinima": True,
        "lookForMaxima": False,
        "similarOrientation": True,
        "fullScaleBlockRadius": 300.0,
        "fullScaleNonMaxSuppressionRadius": 60.0,
        "gdStoredMatchWeight": 0.39,
    },
    "matchDerivationParameters": {
        "matchModelType": "RIGID",
        "matchIterations": 10000,
        "matchMaxEpsilon": 5.0,
        "matchMinInlierRatio": 0.0,
        "matchMinNumInliers": 20,
        "matchMaxTrust": 3.0,
        "matchFilter": "CONSENSUS_SETS",
        "matchRod": 0.5,
    },
}


def test_trial_result_from_json(trial_json):
    result = TrialResult.from_json(trial_json)

    assert result.trial_id == "abc"
    assert result.match_count == 2
    assert result.parameters.feature_and_match.sift.fd_size == 8
    assert result.parameters.feature_and_match.match.rod == 0.92
    assert result.total_ms == 700 + 650 + 40
    assert result.gd_stats is None


def test_match_count_sums_set_sizes(make_trial):
    data = make_trial(
        matches=[
            {"p": [[1, 2, 3], [1, 2, 3]], "q": [[1, 2, 3], [1, 2, 3]], "w": [1, 1, 1]},
            {"p": [[4], [4]], "q": [[4], [4]], "w": [1]},
        ]
    )

    assert TrialResult.from_json(data).match_count == 4


def test_legacy_single_set_aggregate(trial_json):
    stats = TrialResult.from_json(trial_json).stats

    assert stats.aggregate_delta_x_sd == 1.5
    assert stats.aggregate_delta_y_sd == 2.5


def test_aggregated_filter_keeps_missing_aggregate():
    stats = MatchStats.from_json(
        {
            "consensusSetDeltaXStandardDeviations": [1.0],
            "consensusSetDeltaYStandardDeviations": [2.0],
        }
    )

    assert stats.with_legacy_aggregate("AGGREGATED_CONSENSUS_SETS").aggregate_delta_x_sd is None
    assert stats.with_legacy_aggregate("SINGLE_SET").aggregate_delta_x_sd == 1.0


def test_consensus_set_lengths_must_agree():
    with pytest.raises(ValueError):
        ConsensusSetMatches(p=[[1, 2], [1, 2]], q=[[1], [1]], w=[1, 1])
    with pytest.raises(ValueError):
        ConsensusSetMatches(p=[[1]], q=[[1], [1]], w=[1])


def test_match_derivation_json_omits_unset_interpolation():
    match = MatchDerivationParameters(
        model_type="AFFINE",
        iterations=1000,
        max_epsilon=20.0,
        min_inlier_ratio=0.0,
        min_num_inliers=10,
        max_trust=3.0,
        filter="SINGLE_SET",
        regularizer_model_type=NOT_INTERPOLATED,
        interpolated_model_lambda=0.1,
    )

    data = match.to_json()

    assert "matchRegularizerModelType" not in data
    assert "matchInterpolatedModelLambda" not in data
    assert "matchRod" not in data
    assert not match.is_interpolated


def test_match_derivation_json_includes_interpolation():
    match = MatchDerivationParameters(
        model_type="AFFINE",
        iterations=1000,
        max_epsilon=20.0,
        min_inlier_ratio=0.0,
        min_num_inliers=10,
        max_trust=3.0,
        filter="SINGLE_SET",
        regularizer_model_type="RIGID",
        interpolated_model_lambda=0.25,
    )

    data = match.to_json()

    assert data["matchRegularizerModelType"] == "RIGID"
    assert data["matchInterpolatedModelLambda"] == 0.25


def test_geometric_match_drops_rod():
    geometric = GeometricDescriptorAndMatchFilterParameters.from_json(GEOMETRIC_JSON)

    assert geometric.match.rod is None
    assert "matchRod" not in geometric.to_json()["matchDerivationParameters"]
    assert geometric.descriptor.look_for_minima is True
    assert "renderFilterListName" not in geometric.to_json()


def test_trial_parameters_json_round_trip(trial_json):
    data = dict(trial_json["parameters"])
    data["fillWithNoise"] = False
    data["geometricDescriptorAndMatchFilterParameters"] = GEOMETRIC_JSON
    data["featureAndMatchParameters"] = dict(data["featureAndMatchParameters"], pClipPosition="LEFT", clipPixels=500)

    parameters = TrialParameters.from_json(data)
    encoded = parameters.to_json()

    assert encoded["fillWithNoise"] is False
    assert encoded["featureAndMatchParameters"]["pClipPosition"] == "LEFT"
    assert TrialParameters.from_json(encoded) == parameters


def test_trial_parameters_json_omits_no_clip(trial_json):
    data = dict(trial_json["parameters"])
    data["featureAndMatchParameters"] = dict(data["featureAndMatchParameters"], pClipPosition="NO CLIP", clipPixels=500)

    encoded = TrialParameters.from_json(data).to_json()

    assert "pClipPosition" not in encoded["featureAndMatchParameters"]
    assert "fillWithNoise" not in encoded
