"""Images made from point clouds: bird's-eye view and lidar range image.

Images are ``uint8`` arrays of shape (rows, columns, 3) in RGB order.
"""

from __future__ import annotations

import numpy as np

from sadnav.bfnn import _as_points

BEV_BACKGROUND = (255, 255, 255)
BEV_POINT_COLOR = (79, 143, 227)

# for each hue sector: indices into (v, p, q, t) giving blue, green, red
_HSV_SECTORS = np.array(
    [[0, 3, 1], [2, 0, 1], [1, 0, 3], [1, 2, 0], [3, 1, 0], [0, 1, 2]]
)


def generate_bev_image(points, resolution: float = 0.1, min_z: float = 0.2, max_z: float = 2.5) -> np.ndarray:
    """Top-down view of the cloud: each cell holding a point within the height
    band ``[min_z, max_z]`` is coloured, the rest is white.

    The image spans the x/y extent of the cloud, rows along y and columns
    along x, ``resolution`` metres per pixel.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot project an empty cloud")
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")

    min_x, max_x = float(pts[:, 0].min()), float(pts[:, 0].max())
    min_y, max_y = float(pts[:, 1].min()), float(pts[:, 1].max())
    inv_r = 1.0 / resolution

    rows = int((max_y - min_y) * inv_r)
    cols = int((max_x - min_x) * inv_r)
    x_center = 0.5 * (max_x + min_x)
    y_center = 0.5 * (max_y + min_y)
    x_center_image = cols // 2
    y_center_image = rows // 2

    image = np.empty((rows, cols, 3), dtype=np.uint8)
    image[...] = BEV_BACKGROUND

    xs = np.trunc((pts[:, 0] - x_center) * inv_r + x_center_image).astype(np.int64)
    ys = np.trunc((pts[:, 1] - y_center) * inv_r + y_center_image).astype(np.int64)
    z = pts[:, 2]
    mask = (xs >= 0) & (xs < cols) & (ys >= 0) & (ys < rows) & (z >= min_z) & (z <= max_z)
    image[ys[mask], xs[mask]] = BEV_POINT_COLOR
    return image


def _hsv_to_rgb(hsv: np.ndarray) -> np.ndarray:
    """8-bit HSV (hue in 0..180) to 8-bit RGB."""
    h = hsv[..., 0].astype(float) * (6.0 / 180.0)
    s = hsv[..., 1].astype(float) / 255.0
    v = hsv[..., 2].astype(float) / 255.0
    h = np.mod(h, 6.0)
    sector = np.floor(h).astype(np.int64)
    frac = h - sector
    p = v * (1.0 - s)
    q = v * (1.0 - s * frac)
    t = v * (1.0 - s * (1.0 - frac))
    table = np.stack([v, p, q, t], axis=-1)
    bgr = np.take_along_axis(table, _HSV_SECTORS[sector], axis=-1)
    return np.clip(np.rint(bgr[..., ::-1] * 255.0), 0, 255).astype(np.uint8)


def generate_range_image(
    points,
    azimuth_resolution_deg: float = 0.3,
    elevation_rows: int = 16,
    elevation_range: float = 15.0,
    lidar_height: float = 1.128,
) -> np.ndarray:
    """Range image of a lidar scan.

    Columns cover 360 degrees of azimuth, rows cover elevations within
    ``+-elevation_range`` degrees with the top row highest. A pixel's hue
    encodes the horizontal range (100 m at full scale); empty pixels are
    black. When several points share a pixel the last one wins.
    """
    pts = _as_points(points)
    cols = int(360 / azimuth_resolution_deg)
    rows = int(elevation_rows)
    if cols <= 0 or rows <= 0:
        raise ValueError("the range image must have positive size")
    hsv = np.zeros((rows, cols, 3), dtype=np.uint8)

    ele_resolution = elevation_range * 2 / elevation_rows
    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]
    ranges = np.sqrt(x * x + y * y)
    with np.errstate(divide="ignore", invalid="ignore"):
        elevation = np.arcsin((z - lidar_height) / ranges) * 180 / np.pi
    valid = np.isfinite(elevation)

    azimuth = np.arctan2(y[valid], x[valid]) * 180 / np.pi
    azimuth = np.where(azimuth < 0, azimuth + 360, azimuth)
    ranges = ranges[valid]
    elevation = elevation[valid]

    col_idx = np.trunc(azimuth / azimuth_resolution_deg).astype(np.int64)
    row_idx = np.trunc((elevation + elevation_range) / ele_resolution + 0.5).astype(np.int64)
    inside = (col_idx >= 0) & (col_idx < cols) & (row_idx >= 0) & (row_idx < rows)
    col_idx, row_idx, ranges = col_idx[inside], row_idx[inside], ranges[inside]

    if len(ranges):
        linear = row_idx * cols + col_idx
        _, first_in_reversed = np.unique(linear[::-1], return_index=True)
        last = len(linear) - 1 - first_in_reversed
        hue = np.clip(np.trunc(ranges[last] / 100 * 255.0), 0, 255).astype(np.uint8)
        hsv[row_idx[last], col_idx[last], 0] = hue
        hsv[row_idx[last], col_idx[last], 1] = 255
        hsv[row_idx[last], col_idx[last], 2] = 127

    return _hsv_to_rgb(hsv[::-1])