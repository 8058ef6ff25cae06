import pytest

from match_trial_viewer.config import (
    ViewerConfig,
    parse_geometry,
    trial_id_from_query,
    with_trial_id,
)


def test_defaults():
    config = ViewerConfig()

    assert config.base_url == "http://localhost:8080/render-ws/v1"
    assert config.owner == "flyTEM"
    assert config.view_scale == 0.2
    assert config.cell_margin == 4
    assert config.request_timeout is None
    assert config.is_new_trial


def test_from_query_fills_fields():
    config = ViewerConfig.from_query(
        "?matchTrialId=abc&renderScale=0.3&owner=trautmane&saveToCollection=test_matches"
    )

    assert config.trial_id == "abc"
    assert config.view_scale == 0.3
    assert config.owner == "trautmane"
    assert config.save_to_collection == "test_matches"
    assert config.match_owner == "trautmane"
    assert not config.is_new_trial


def test_save_to_owner_overrides_owner():
    config = ViewerConfig.from_query("saveToOwner=other", owner="flyTEM")

    assert config.match_owner == "other"


def test_invalid_render_scale_uses_default():
    assert ViewerConfig.from_query("renderScale=big").view_scale == 0.2


def test_tbd_trial_is_new():
    assert ViewerConfig.from_query("matchTrialId=TBD").is_new_trial


def test_query_round_trip():
    config = ViewerConfig(trial_id="abc", view_scale=0.25, save_to_owner="o", save_to_collection="c")

    assert ViewerConfig.from_query(config.to_query()) == config


def test_with_trial_id_rewrites_only_trial_id():
    assert with_trial_id("owner=x&matchTrialId=TBD&renderScale=0.3", "abc") == (
        "owner=x&matchTrialId=abc&renderScale=0.3"
    )
    assert with_trial_id("owner=x", "abc") == "owner=x&matchTrialId=abc"
    assert trial_id_from_query("owner=x&matchTrialId=abc") == "abc"
    assert trial_id_from_query("owner=x") is None


def test_parse_geometry():
    assert parse_geometry("1400x900+10+20") == (1400, 900, 10, 20)
    with pytest.raises(ValueError):
        parse_geometry("1400x900")
