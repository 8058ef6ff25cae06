from PIL import Image

import pytest

from match_trial_viewer.core import (
    CONSENSUS_SET_PALETTE,
    HIGHLIGHT_COLOR,
    SINGLE_SET_PALETTE,
    PilSurface,
    canvas_size,
    cell_origin,
    count_matches,
    format_scale,
    from_screen,
    has_render_parameters_urls,
    image_url_for,
    locate_match,
    match_color,
    next_match_index,
    normalize_view_scale,
    parse_tile_render_url,
    render_scale_of,
    render_trial_view,
    tile_pair_view_url,
    to_screen,
)
from match_trial_viewer.models import CellPlacement, ConsensusSetMatches, TrialParameters

TILE_URL = (
    "http://renderer.int:8080/render-ws/v1/owner/flyTEM/project/FAFB00/stack/v12_acquire"
    "/tile/151215054802105048.3761.0/render-parameters?scale=0.4&filter=true"
)


def consensus_set(size, offset=0):
    xs = [float(offset + i) for i in range(size)]
    return ConsensusSetMatches(p=[xs, xs], q=[xs, xs], w=[1.0] * size)


def test_cell_origin_places_columns_side_by_side():
    assert cell_origin(0, 0, 100, 80, 4) == (4, 4)
    assert cell_origin(0, 1, 100, 80, 4) == (108, 4)
    assert cell_origin(1, 0, 100, 80, 4) == (4, 88)


def test_canvas_size_covers_both_cells():
    p = CellPlacement(x=4, y=4, width=100, height=80, view_scale=0.2)
    q = CellPlacement(x=108, y=4, width=90, height=120, view_scale=0.2)

    width, height = canvas_size(p, q, 4)

    assert width >= q.x + q.width
    assert height >= max(p.height, q.height)
    assert (width, height) == (202, 124)


def test_screen_transform_round_trip():
    for value in (0.0, 12.5, 4096.0):
        screen = to_screen(value, 0.2, 58)
        assert from_screen(screen, 0.2, 58) == pytest.approx(value)


def test_from_screen_rejects_zero_scale():
    with pytest.raises(ValueError):
        from_screen(10, 0, 4)


def test_next_match_index_is_cyclic():
    assert next_match_index(-1, 1, 2) == 0
    assert next_match_index(0, 1, 2) == 1
    assert next_match_index(1, 1, 2) == 0
    assert next_match_index(0, -1, 2) == 1
    assert next_match_index(-1, -1, 3) == 2
    for index in range(5):
        assert next_match_index(next_match_index(index, 1, 5), -1, 5) == index


def test_next_match_index_requires_matches():
    with pytest.raises(ValueError):
        next_match_index(-1, 1, 0)


def test_locate_match_walks_consensus_sets():
    sets = [consensus_set(3), consensus_set(5)]

    assert count_matches(sets) == 8
    assert locate_match(sets, 0) == (0, 0)
    assert locate_match(sets, 2) == (0, 2)
    assert locate_match(sets, 3) == (1, 0)
    assert locate_match(sets, 4) == (1, 1)
    assert locate_match(sets, 7) == (1, 4)
    with pytest.raises(IndexError):
        locate_match(sets, 8)


def test_match_color_palettes():
    assert match_color(0, 0, 1) == SINGLE_SET_PALETTE[0]
    assert match_color(0, 5, 1) == SINGLE_SET_PALETTE[1]
    assert match_color(2, 0, 3) == CONSENSUS_SET_PALETTE[2]
    assert match_color(16, 0, 20) == CONSENSUS_SET_PALETTE[1]


def test_normalize_view_scale_falls_back_to_default():
    assert normalize_view_scale("0.35") == 0.35
    assert normalize_view_scale("abc") == 0.2
    assert normalize_view_scale(None) == 0.2
    assert normalize_view_scale(float("nan")) == 0.2


def test_format_scale():
    assert format_scale(0.2) == "0.2"
    assert format_scale(1.0) == "1"


def test_render_scale_of_url():
    assert render_scale_of(TILE_URL) == 0.4
    assert render_scale_of("http://render/tile/a/render-parameters") == 1.0


def test_image_url_for_replaces_scale():
    url = image_url_for(TILE_URL, 0.2)

    assert "/jpeg-image?" in url
    assert "render-parameters" not in url
    assert url.endswith("?scale=0.2&filter=true")


def test_image_url_for_adds_missing_scale():
    url = image_url_for("http://render/tile/a.1.0/render-parameters", 0.3)

    assert url == "http://render/tile/a.1.0/jpeg-image?scale=0.3"


def test_has_render_parameters_urls(make_trial):
    parameters = TrialParameters.from_json(make_trial()["parameters"])
    assert has_render_parameters_urls(parameters)

    data = make_trial(q_url="http://render/tile/b.1.0/jpeg-image")["parameters"]
    assert not has_render_parameters_urls(TrialParameters.from_json(data))


def test_parse_tile_render_url():
    tile = parse_tile_render_url(TILE_URL)

    assert tile.render_ws_base == "http://renderer.int:8080/render-ws"
    assert tile.owner == "flyTEM"
    assert tile.project == "FAFB00"
    assert tile.stack == "v12_acquire"
    assert tile.tile_id == "151215054802105048.3761.0"
    assert tile.group_id == "3761.0"
    assert tile.view_base == "http://renderer.int:8080/render-ws/view"


def test_parse_tile_render_url_rejects_box_urls():
    with pytest.raises(ValueError):
        parse_tile_render_url("http://render/render-ws/v1/owner/o/project/p/stack/s/z/1/box/0,0,1,1,1/render-parameters")


def test_tile_pair_view_url():
    p = parse_tile_render_url(TILE_URL)
    q = parse_tile_render_url(TILE_URL.replace("105048", "104048"))

    url = tile_pair_view_url(p, q, "flyTEM", "FAFB_test")

    assert url == (
        "http://renderer.int:8080/render-ws/view/tile-pair.html?renderScale=0.1"
        "&renderStackOwner=flyTEM&renderStackProject=FAFB00&renderStack=v12_acquire"
        "&matchOwner=flyTEM&matchCollection=FAFB_test"
        "&pGroupId=3761.0&pId=151215054802105048.3761.0"
        "&qGroupId=3761.0&qId=151215054802104048.3761.0"
    )


def test_pil_surface_strokes():
    surface = PilSurface(20, 20)

    surface.stroke_line(0, 5, 19, 5, "#ff0000")
    surface.stroke_circle(10, 12, 3, "#00ff00")

    assert surface.image.getpixel((10, 5)) == (255, 0, 0)
    assert surface.image.getpixel((10, 12)) == (0, 0, 0)
    assert any(surface.image.getpixel((x, 12)) == (0, 255, 0) for x in range(6, 15))


def test_render_trial_view_draws_images_and_selection():
    p_image = Image.new("RGB", (50, 40), (200, 0, 0))
    q_image = Image.new("RGB", (50, 40), (0, 0, 200))
    p = CellPlacement(x=4, y=4, width=50, height=40, view_scale=1.0)
    q = CellPlacement(x=58, y=4, width=50, height=40, view_scale=1.0)
    sets = [ConsensusSetMatches(p=[[10.0, 30.0], [10.0, 30.0]], q=[[10.0, 30.0], [10.0, 30.0]], w=[1.0, 1.0])]
    surface = PilSurface()

    text = render_trial_view(surface, p_image, q_image, p, q, sets, 4, match_index=1, draw_lines=True)

    assert text == "match 2 of 2"
    assert surface.size == (112, 44)
    assert surface.image.getpixel((2, 2)) == (0, 0, 0)
    assert surface.image.getpixel((6, 40)) == (200, 0, 0)
    assert surface.image.getpixel((100, 40)) == (0, 0, 200)
    # line from p (34, 34) to q (88, 34)
    assert surface.image.getpixel((60, 34)) == Image.new("RGB", (1, 1), HIGHLIGHT_COLOR).getpixel((0, 0))


def test_render_trial_view_without_matches():
    image = Image.new("RGB", (10, 10), (255, 255, 255))
    placement = CellPlacement(x=4, y=4, width=10, height=10, view_scale=1.0)

    assert render_trial_view(PilSurface(), image, image, placement, placement, [], 4) is None
