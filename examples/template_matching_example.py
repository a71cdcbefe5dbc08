#!/usr/bin/env python3
"""Template matching example: find one or all occurrences of a template.

Loads a screenshot and a template image, scores every offset with
MatchEngine (GPU when available, CPU otherwise) and draws the detections.

Requirements: opencv-python (image I/O and drawing only)

Usage:
    python template_matching_example.py screen.png button.png
    python template_matching_example.py screen.png icon.png --all --threshold 0.85
    python template_matching_example.py screen.png icon.png --backend cpu -o out.png
"""

import argparse
import time

import cv2
import numpy as np

from libtmatch import MatchEngine, MatchTemplateMethod


def parse_args():
    parser = argparse.ArgumentParser(
        description="MatchEngine: locate a template in an image")
    parser.add_argument("image", help="Path to the search image")
    parser.add_argument("template", help="Path to the template image")
    parser.add_argument("--backend", default="auto", choices=["auto", "gpu", "cpu"],
                        help="Compute backend (default: auto)")
    parser.add_argument("--method", default="ccoeff_normed",
                        choices=[m.value for m in MatchTemplateMethod],
                        help="Scoring method (default: ccoeff_normed)")
    parser.add_argument("--threshold", type=float, default=None,
                        help="Acceptance threshold (default: per-method default)")
    parser.add_argument("--all", action="store_true",
                        help="Report every occurrence instead of the best one")
    parser.add_argument("-o", "--output", default=None,
                        help="Write the annotated image here instead of showing it")
    parser.add_argument("--verbose", action="store_true",
                        help="Print backend timings to stderr")
    return parser.parse_args()


def load_gray(path):
    """Read an image as float32 luminance in [0, 1]."""
    img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise FileNotFoundError(f"Cannot read image: {path}")
    return img.astype(np.float32) / 255.0


def main():
    args = parse_args()
    method = MatchTemplateMethod(args.method)
    frame = load_gray(args.image)
    template = load_gray(args.template)

    with MatchEngine(backend=args.backend, method=method, verbose=args.verbose) as engine:
        print(f"Backend: {engine.backend_name}")
        t0 = time.perf_counter()
        if args.all:
            rects = engine.locate_all(frame, template, threshold=args.threshold).rects
        else:
            rect = engine.locate(frame, template, threshold=args.threshold)
            rects = [] if rect is None else [rect]
        elapsed_ms = (time.perf_counter() - t0) * 1000

    print(f"{len(rects)} match(es) in {elapsed_ms:.1f} ms")
    for r in rects:
        print(f"  x={r.x} y={r.y} w={r.width} h={r.height}")

    annotated = cv2.imread(args.image, cv2.IMREAD_COLOR)
    for r in rects:
        cv2.rectangle(annotated, (r.x, r.y), (r.x + r.width, r.y + r.height),
                      (0, 255, 0), 2)

    if args.output:
        cv2.imwrite(args.output, annotated)
        print(f"Wrote {args.output}")
    else:
        cv2.imshow("MatchEngine", annotated)
        cv2.waitKey(0)
        cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
