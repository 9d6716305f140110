from typing import Dict, Mapping, Optional
import logging
import os
import numpy as np
import cv2

logger = logging.getLogger(__name__)

# artifact key -> file suffix
ARTIFACT_SUFFIXES: Dict[str, str] = {
    "mask": "_debug_mask.png",
    "quad": "_debug_quad.png",
    "warp": "_debug_warp.png",
    "crop": "_debug_crop.png",
    "clip": "_debug_clip.png",
}


def draw_quad_on_image(image_bgr: np.ndarray, quad: np.ndarray, pct: Optional[int] = None) -> np.ndarray:
    vis = image_bgr.copy()
    pts = np.round(np.asarray(quad, dtype=np.float32).reshape(-1, 2)).astype(np.int32)
    cv2.polylines(vis, [pts], True, (0, 255, 0), 3, cv2.LINE_AA)
    if pct is not None and pct >= 0:
        cv2.putText(vis, f"Coverage: {pct}%", (20, 40), cv2.FONT_HERSHEY_SIMPLEX,
                    1.0, (0, 255, 0), 2, cv2.LINE_AA)
    return vis


def natural_crop(image_bgr: np.ndarray, quad: np.ndarray, min_side: int = 20) -> np.ndarray:
    """Perspective-corrected crop at the quad's own size (TL, TR, BR, BL)."""
    q = np.asarray(quad, dtype=np.float32).reshape(4, 2)
    tl, tr, br, bl = q
    w = max(min_side, int(round((np.linalg.norm(tr - tl) + np.linalg.norm(br - bl)) / 2.0)))
    h = max(min_side, int(round((np.linalg.norm(bl - tl) + np.linalg.norm(br - tr)) / 2.0)))
    dst = np.array([[0, 0], [w - 1, 0], [w - 1, h - 1], [0, h - 1]], dtype=np.float32)
    Hm = cv2.getPerspectiveTransform(q, dst)
    return cv2.warpPerspective(image_bgr, Hm, (w, h), flags=cv2.INTER_LINEAR,
                               borderMode=cv2.BORDER_REPLICATE)


def clip_to_quad(image_bgr: np.ndarray, quad: np.ndarray) -> np.ndarray:
    poly_mask = np.zeros(image_bgr.shape[:2], dtype=np.uint8)
    pts = np.round(np.asarray(quad, dtype=np.float32).reshape(-1, 2)).astype(np.int32)
    cv2.fillConvexPoly(poly_mask, pts, 255)
    return cv2.bitwise_and(image_bgr, image_bgr, mask=poly_mask)


def build_artifacts(image_bgr: np.ndarray, quad: np.ndarray, pct: int, square: np.ndarray) -> Dict[str, np.ndarray]:
    return {
        "quad": draw_quad_on_image(image_bgr, quad, pct),
        "warp": square,
        "crop": natural_crop(image_bgr, quad),
        "clip": clip_to_quad(image_bgr, quad),
    }


def save_artifacts(artifacts: Mapping[str, np.ndarray], base_path: str) -> Dict[str, str]:
    """Write each artifact to ``<base_path><suffix>``; returns key -> path."""
    out_dir = os.path.dirname(base_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    paths: Dict[str, str] = {}
    for key, img in artifacts.items():
        suffix = ARTIFACT_SUFFIXES.get(key, f"_debug_{key}.png")
        path = base_path + suffix
        ok = cv2.imwrite(path, img)
        if not ok:
            raise RuntimeError(f"Failed to write image: {path}")
        logger.debug("wrote %s", path)
        paths[key] = path
    return paths


def show_artifacts(
    artifacts: Mapping[str, np.ndarray],
    cols: int = 3,
    figsize: tuple = (12, 8),
    title: str = "Marker detection",
):
    import matplotlib.pyplot as plt

    names = list(artifacts.keys())
    n = len(names)
    if n == 0:
        return
    rows = (n + cols - 1) // cols

    fig, axes = plt.subplots(rows, cols, figsize=figsize)
    axes = np.array(axes).reshape(-1)

    for ax in axes[n:]:
        ax.axis("off")

    for i, name in enumerate(names):
        ax = axes[i]
        img = artifacts[name]
        if img.ndim == 2:
            ax.imshow(img, cmap="gray")
        else:
            ax.imshow(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        ax.set_title(name)
        ax.axis("off")

    fig.suptitle(title, fontsize=14)
    plt.tight_layout()
    plt.show()
