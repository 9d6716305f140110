import argparse
import logging
import os
import sys

from .batch import collect_images, process_image, write_report
from .config import Params, load_params
from .visualize import show_artifacts


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="marker-coverage",
        description="Find a 3x3 color grid marker and report its share of the image area.",
    )
    ap.add_argument("inputs", nargs="+", help="image files or folders (.png/.jpg/.jpeg)")
    ap.add_argument("--debug", action="store_true", help="verbose pipeline logs")
    ap.add_argument("--save-debug", action="store_true", help="write mask/quad/warp/crop/clip images")
    ap.add_argument("--out", default=None, help="folder for debug images (default: next to each input)")
    ap.add_argument("--report", default=None, help="write a CSV report to this path")
    ap.add_argument("--params", default=None, help="JSON file with parameter overrides")
    ap.add_argument("--show", action="store_true", help="display debug images with matplotlib")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    params = load_params(args.params) if args.params else Params()

    paths = []
    for p in args.inputs:
        try:
            paths.extend(collect_images(p))
        except FileNotFoundError as e:
            print(f"[X] {e}", file=sys.stderr)
    if not paths:
        print("[X] No images to process.", file=sys.stderr)
        return 1

    rows = []
    for i, path in enumerate(paths, 1):
        print(f"({i}/{len(paths)}) Processing: {path}")
        row, out = process_image(path, params, save_debug=args.save_debug,
                                 out_dir=args.out, keep_artifacts=args.show)
        print(row.summary())
        rows.append(row)
        if out is not None and args.show:
            show_artifacts(out.artifacts, title=os.path.basename(path))

    found = sum(r.found for r in rows)
    print(f"\nFound {found}/{len(rows)} images with a valid marker.")

    if args.report:
        write_report(rows, args.report)
        print(f"[OK] Wrote report to: {os.path.abspath(args.report)}")

    return 0 if found == len(rows) else 2


if __name__ == "__main__":
    sys.exit(main())
