#!/usr/bin/env python3
"""Batch runner for the microplastic detection → characterization pipeline.

This script is intended to be "zero-config" for the common case:
- Scans JPG/PNG images under `assets/images/`.
- Detects particles with the hosted Roboflow model, then characterizes them
  (shape, color, transparency) with a vision-language model through LiteLLM.
- Writes per-image outputs under `outputs/particles/<image_stem>/`:
  - `annotated.png`: index-labeled image sent to the VLM
  - `overlay.png`: display overlay at the selected display mode
  - `particles.csv`: one row per particle above the confidence threshold
  - `final.json`: all particles with their analyses
- Produces `outputs/particles/summary.yaml`: recap of counts per image

Tuning is via environment variables (see `AnalyzerConfig.from_env`):
- `ROBOFLOW_API_KEY` (required), `ROBOFLOW_MODEL` (default: "microplastic_detection/1")
- `VLM_MODEL` (default: "gemini/gemini-1.5-flash-latest"; provider prefix required)
- `VLM_MAX_TOKENS`, `VLM_TIMEOUT_S`, `CONFIDENCE_THRESHOLD`, `MAX_IMAGE_DIM`
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml

from microplastic_detector.config import AnalyzerConfig
from microplastic_detector.pipelines.export import FinalJson, particle_to_json, to_csv
from microplastic_detector.pipelines.projection import (
    available_display_modes,
    compute_stats,
    distribution_rows,
    filter_and_project,
)
from microplastic_detector.pipelines.session import AnalysisSession, SessionResult
from microplastic_detector.vision.image import ensure_dir
from microplastic_detector.vision.overlay import overlay_instructions
from microplastic_detector.vision.vis import rasterize_instructions, render_annotated


def _iter_images(images_dir: Path) -> list[Path]:
    exts = {".jpg", ".jpeg", ".png"}
    return sorted(p for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in exts)


async def _submit_all(
    session: AnalysisSession, image_paths: list[Path]
) -> list[tuple[Path, SessionResult]]:
    # One event loop for the whole batch; LiteLLM caches async clients per loop.
    results: list[tuple[Path, SessionResult]] = []
    for image_path in image_paths:
        print(f"Analysing {image_path}")
        results.append((image_path, await session.submit(image_path)))
    return results


def _yaml_dump(data: object) -> str:
    dumped = yaml.safe_dump(data, sort_keys=False)
    if dumped is None:
        return ""
    if isinstance(dumped, bytes):
        return dumped.decode("utf-8")
    return dumped


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--images_dir", type=str, default="assets/images")
    ap.add_argument("--out_root", type=str, default="outputs/particles")
    ap.add_argument("--config", type=str, default=None, help="optional YAML overrides")
    ap.add_argument(
        "--display_mode",
        choices=["confidence", "type", "color", "transparency"],
        default="type",
    )
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    try:
        cfg = AnalyzerConfig.from_env()
        if args.config:
            cfg = AnalyzerConfig.from_yaml(Path(args.config), base=cfg)
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}") from e

    images_dir = Path(args.images_dir).expanduser().resolve()
    if not images_dir.is_dir():
        raise SystemExit(f"--images_dir is not a directory: {images_dir}")
    image_paths = _iter_images(images_dir)
    if not image_paths:
        raise SystemExit(f"No images found under: {images_dir}")

    out_root = Path(args.out_root).expanduser().resolve()
    ensure_dir(out_root)

    session = AnalysisSession.from_config(cfg)
    summary: list[dict[str, object]] = []
    failures = 0
    for image_path, result in asyncio.run(_submit_all(session, image_paths)):
        per_outdir = out_root / image_path.stem
        ensure_dir(per_outdir)
        state = result.state
        if state.detection_error is not None or state.image is None:
            failures += 1
            print(f"[ERROR] {image_path}: {state.detection_error}", file=sys.stderr)
            summary.append({"image": str(image_path), "error": str(state.detection_error)})
            continue
        if state.characterization_error is not None:
            print(f"[WARN] {image_path}: {state.characterization_error}", file=sys.stderr)

        img = state.image
        w, h = img.size
        render_annotated(img, state.particles).save(per_outdir / "annotated.png")
        shown = filter_and_project(state.particles, cfg.confidence_threshold)
        stats = compute_stats(shown) if shown else None
        mode = args.display_mode
        if mode not in available_display_modes(stats):
            mode = "confidence"
        instructions = overlay_instructions(w, h, w, h, shown, mode, None)
        rasterize_instructions(img, instructions).save(per_outdir / "overlay.png")

        (per_outdir / "particles.csv").write_text(to_csv(shown) + "\n", encoding="utf-8")
        final = FinalJson(
            image=str(image_path),
            image_w=w,
            image_h=h,
            confidence_threshold=cfg.confidence_threshold,
            generation=state.generation,
            characterization_error=(
                str(state.characterization_error) if state.characterization_error else None
            ),
            particles=[particle_to_json(p) for p in state.particles],
        )
        (per_outdir / "final.json").write_text(
            final.model_dump_json(indent=2, by_alias=True), encoding="utf-8"
        )

        entry: dict[str, object] = {
            "image": str(image_path),
            "outdir": str(per_outdir),
            "detected": len(state.particles),
            "displayed": len(shown),
            "analyzed": stats.analyzed_count if stats else 0,
        }
        if stats is not None and stats.has_stats:
            entry["shapes"] = {
                label: {"count": n, "percent": round(pct, 1)}
                for label, n, pct in distribution_rows(stats.shapes, stats)
            }
        summary.append(entry)

    (out_root / "summary.yaml").write_text(_yaml_dump({"images": summary}), encoding="utf-8")

    if failures:
        print(f"Completed with {failures} failures.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
