import cv2
import numpy as np
import pytest

# OpenCV hues (0..180) that land in nine different 10-wide hue bins
CELL_HUES = (0, 25, 45, 65, 95, 105, 125, 140, 160)
BACKGROUND = (200, 200, 200)


def build_marker(size=500, line=8):
    """3x3 grid of saturated cells separated by black lines (BGR)."""
    hsv = np.array([[(h, 255, 255) for h in CELL_HUES]], dtype=np.uint8)
    colors = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)[0]

    marker = np.zeros((size, size, 3), dtype=np.uint8)
    edges = [0, size // 3, 2 * size // 3, size]
    for r in range(3):
        for c in range(3):
            marker[edges[r]:edges[r + 1], edges[c]:edges[c + 1]] = colors[3 * r + c]
    half = line // 2
    for e in edges[1:3]:
        marker[:, e - half:e + half] = 0
        marker[e - half:e + half, :] = 0
    return marker


def build_scene(canvas=(1000, 1000), marker_size=500, angle=0.0, offset=None, line=8):
    """Gray canvas (w, h) with a marker pasted at offset (centered by default), optionally rotated."""
    w, h = canvas
    img = np.full((h, w, 3), BACKGROUND, dtype=np.uint8)
    marker = build_marker(marker_size, line)
    if offset is None:
        offset = ((w - marker_size) // 2, (h - marker_size) // 2)
    x, y = offset
    img[y:y + marker_size, x:x + marker_size] = marker
    if angle:
        M = cv2.getRotationMatrix2D((w / 2.0, h / 2.0), float(angle), 1.0)
        img = cv2.warpAffine(img, M, (w, h), flags=cv2.INTER_NEAREST,
                             borderMode=cv2.BORDER_CONSTANT, borderValue=BACKGROUND)
    return img


@pytest.fixture
def make_marker():
    return build_marker


@pytest.fixture
def make_scene():
    return build_scene


@pytest.fixture(scope="session")
def scene():
    # 500 px marker on a 1000 x 1000 canvas -> 25 %
    return build_scene()


@pytest.fixture
def scene_file(tmp_path, scene):
    path = tmp_path / "marker.png"
    assert cv2.imwrite(str(path), scene)
    return str(path)


@pytest.fixture
def broken_file(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    return str(path)
