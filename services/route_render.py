"""
Route-line overlay rendering.

Route lines are stored as ordered points normalised to the photo (0..1 on
both axes). They are drawn as a chain of quadratic curves: every interior
point is a control point aimed at the midpoint between it and its successor,
and the chain ends with a degenerate curve onto the last point. This is a
cheap smoothing pass, not a spline through the points.
"""
import math
from markupsafe import escape

DEFAULT_STROKE = '#22c55e'
MIN_STROKE_WIDTH = 3
STROKE_DIVISOR = 260
MARKER_RADIUS = 12


def _num(v):
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return repr(v) if isinstance(v, float) else str(v)


def _xy(p):
    if isinstance(p, dict):
        return p['x'], p['y']
    return p[0], p[1]


def smooth_svg_path(points, width=1, height=1):
    """SVG path data for a route line, optionally scaled to pixel space."""
    if len(points) < 2:
        return ''
    pts = [_xy(p) for p in points]

    def at(x, y):
        return f'{_num(x * width)} {_num(y * height)}'

    if len(pts) == 2:
        return f'M {at(*pts[0])} L {at(*pts[1])}'

    parts = [f'M {at(*pts[0])}']
    for i in range(1, len(pts) - 1):
        x, y = pts[i]
        nx, ny = pts[i + 1]
        parts.append(f'Q {at(x, y)} {_num((x + nx) / 2 * width)} {_num((y + ny) / 2 * height)}')
    last = at(*pts[-1])
    parts.append(f'Q {last} {last}')
    return ' '.join(parts)


def stroke_width(natural_width, natural_height):
    """Stroke width in image pixels so lines look alike on any photo size."""
    if not natural_width or not natural_height:
        return MIN_STROKE_WIDTH
    return max(MIN_STROKE_WIDTH, math.floor(min(natural_width, natural_height) / STROKE_DIVISOR + 0.5))


def render_overlay_svg(route_lines, natural_width, natural_height, selected_id=None):
    """Standalone SVG document with every route line of one image.

    ``route_lines`` are dicts with ``points`` and optional ``id``/``color``.
    Each line gets a numbered marker at its first point.
    """
    w, h = int(natural_width), int(natural_height)
    sw = stroke_width(w, h)
    out = [
        f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 {w} {h}" '
        f'width="{w}" height="{h}">'
    ]
    for index, line in enumerate(route_lines, start=1):
        d = smooth_svg_path(line.get('points') or [], w, h)
        if not d:
            continue
        color = escape(line.get('color') or DEFAULT_STROKE)
        width = sw + 1 if selected_id is not None and line.get('id') == selected_id else sw
        x0, y0 = _xy(line['points'][0])
        cx, cy = _num(x0 * w), _num(y0 * h)
        out.append(f'<g data-route-id="{escape(str(line.get("id", "")))}">')
        out.append(
            f'<path d="{d}" stroke="{color}" stroke-width="{width}" fill="none" '
            f'stroke-linecap="round" stroke-linejoin="round"/>'
        )
        out.append(f'<circle cx="{cx}" cy="{cy}" r="{MARKER_RADIUS}" fill="{color}"/>')
        out.append(
            f'<text x="{cx}" y="{cy}" fill="white" font-size="10" font-weight="bold" '
            f'text-anchor="middle" dominant-baseline="central">{index}</text>'
        )
        out.append('</g>')
    out.append('</svg>')
    return ''.join(out)
