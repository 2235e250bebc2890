import pytest

from services.route_render import render_overlay_svg, smooth_svg_path, stroke_width


@pytest.mark.parametrize('points', [[], [(3, 4)], [{'x': 0.2, 'y': 0.4}]])
def test_fewer_than_two_points_draw_nothing(points):
    assert smooth_svg_path(points) == ''


def test_two_points_is_a_single_line():
    path = smooth_svg_path([(0, 0), (10, 20)])
    assert path == 'M 0 0 L 10 20'
    assert path.count('L') == 1
    assert 'Q' not in path


def test_three_points_curve_through_midpoint_and_close_on_last():
    path = smooth_svg_path([(0, 0), (10, 10), (20, 0)])
    assert path == 'M 0 0 Q 10 10 15 5 Q 20 0 20 0'


@pytest.mark.parametrize('n', [3, 4, 7, 12])
def test_curve_count_is_interior_points_plus_closing(n):
    points = [(i, (i * 7) % 5) for i in range(n)]
    path = smooth_svg_path(points)
    assert path.startswith('M ')
    assert path.count('Q') == (n - 2) + 1
    assert path.endswith(f'Q {n - 1} {((n - 1) * 7) % 5} {n - 1} {((n - 1) * 7) % 5}')


def test_rendering_is_deterministic():
    points = [{'x': 0.13, 'y': 0.71}, {'x': 0.4, 'y': 0.33}, {'x': 0.52, 'y': 0.2}, {'x': 0.9, 'y': 0.05}]
    assert smooth_svg_path(points, 800, 600) == smooth_svg_path(points, 800, 600)


def test_normalised_points_scale_to_pixels():
    path = smooth_svg_path([{'x': 0.5, 'y': 0.5}, {'x': 1, 'y': 1}], 200, 100)
    assert path == 'M 100 50 L 200 100'


@pytest.mark.parametrize('w,h,expected', [
    (1040, 780, 3),
    (520, 520, 3),
    (4000, 3000, 12),
    (3900, 3900, 15),
    (None, 600, 3),
])
def test_stroke_width(w, h, expected):
    assert stroke_width(w, h) == expected


def test_overlay_svg_contains_each_drawable_line():
    lines = [
        {'id': 'a', 'points': [{'x': 0.1, 'y': 0.9}, {'x': 0.5, 'y': 0.1}], 'color': '#ff00ff'},
        {'id': 'b', 'points': [{'x': 0.2, 'y': 0.2}]},
        {'id': 'c', 'points': [{'x': 0.3, 'y': 0.9}, {'x': 0.4, 'y': 0.5}, {'x': 0.6, 'y': 0.1}],
         'color': '"><script>'},
    ]
    svg = render_overlay_svg(lines, 1040, 780)
    assert svg.startswith('<svg')
    assert 'viewBox="0 0 1040 780"' in svg
    assert 'data-route-id="a"' in svg
    assert 'data-route-id="b"' not in svg
    assert 'data-route-id="c"' in svg
    assert 'stroke-width="3"' in svg
    assert '<script>' not in svg


def test_selected_line_is_drawn_thicker():
    lines = [{'id': 'a', 'points': [(0, 0), (1, 1)]}, {'id': 'b', 'points': [(0, 1), (1, 0)]}]
    svg = render_overlay_svg(lines, 4000, 3000, selected_id='b')
    assert svg.count('stroke-width="12"') == 1
    assert svg.count('stroke-width="13"') == 1
