import argparse
import json
import logging
import sys
from multiprocessing import cpu_count
from pathlib import Path
from typing import List, Optional

from coolname import generate_slug

from ..datatypes import ProbeSettings
from ..utils.io import read_hdr, write_exr, write_png
from .fit_probe import render_probe
from .radiance import SYNTHETIC_RADIANCE, EnvironmentMap, make_synthetic_radiance

OUTPUT_DIR = "experiments"

# python -m ProbeStudio.analysis.probe.run_probe "path/to/LatLongEnvmap.hdr"
# python -m ProbeStudio.analysis.probe.run_probe "path/to/LatLongEnvmap.hdr" --lobe_count 24 --sample_count 50000 --processes 8
# python -m ProbeStudio.analysis.probe.run_probe --synthetic directional --brdf cosine -v


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="probestudio", description="Fit SG and SH lighting probes to a lat-long environment map")
    parser.add_argument("hdri", type=str, nargs="?", default=None, help="Lat-long environment map (.hdr or .exr)")
    parser.add_argument("--synthetic", type=str, choices=sorted(SYNTHETIC_RADIANCE), default=None, help="Use a synthetic radiance source instead of a file")
    parser.add_argument("--lobe_count", type=int, default=12, help="Number of SG lobes (default: 12)")
    parser.add_argument("--lambda", dest="lobe_sharpness", type=float, default=None, help="SG lobe sharpness (default: 0.5 * lobe_count)")
    parser.add_argument("--sample_count", type=int, default=20000, help="Projection samples (default: 20000)")
    parser.add_argument("--mc_sample_count", type=int, default=5000, help="Monte Carlo irradiance samples per pixel (default: 5000)")
    parser.add_argument("--width", type=int, default=256, help="Output width (default: 256)")
    parser.add_argument("--height", type=int, default=128, help="Output height (default: 128)")
    parser.add_argument("--brdf", type=str, choices=["fitted", "cosine"], default="fitted", help="SG lobe used as the diffuse convolution kernel")
    parser.add_argument("--output_dir", type=str, default=OUTPUT_DIR, help=f"Parent folder of the experiment folder (default: {OUTPUT_DIR})")
    parser.add_argument("--exr", action="store_true", help="Also write linear EXR images")
    parser.add_argument("--processes", "-p", type=int, default=None, help=f"Number of parallel processes (default: {cpu_count()}, use 1 for sequential)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (DEBUG) logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),  # Output to console
        ]
    )

    parser = build_parser()
    args = parser.parse_args(argv)

    # Set logging level based on verbose flag
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        print("Debug logging enabled")

    logger = logging.getLogger(__name__)

    if args.hdri is not None and args.synthetic is not None:
        parser.error("an input file and --synthetic are mutually exclusive")

    if args.hdri is None and args.synthetic is None:
        print("Usage: probestudio <LatLongEnvmap.hdr>")
        return 1

    if args.synthetic is not None:
        radiance_fn = make_synthetic_radiance(args.synthetic)
        source_name = f"synthetic {args.synthetic}"
    else:
        try:
            radiance_fn = EnvironmentMap(read_hdr(args.hdri))
        except ValueError as e:
            logger.error(str(e))
            print(f"ERROR: Failed to read input image from file '{args.hdri}'")
            return 1
        source_name = Path(args.hdri).name
        logger.info(f"Loaded {source_name} with size {radiance_fn.image.size}")

    try:
        settings = ProbeSettings(
            lobe_count=args.lobe_count,
            lobe_sharpness=args.lobe_sharpness,
            sample_count=args.sample_count,
            mc_sample_count=args.mc_sample_count,
            width=args.width,
            height=args.height,
            brdf=args.brdf,
            processes=args.processes)

        experiment_name = generate_slug(2)
        output_dir = Path(args.output_dir) / experiment_name
        output_dir.mkdir(parents=True, exist_ok=True)
        print(f"Output directory: {output_dir}")

        logger.info(f"Processing {source_name}...")
        result = render_probe(radiance_fn, settings, show_progress=True)

        for name, image in result.images.items():
            logger.info(f"Writing {name}.png...")
            write_png(image, output_dir / f"{name}.png")
            if args.exr:
                write_exr(image, output_dir / f"{name}.exr")
        write_png(result.combined, output_dir / "combined.png")
    except ValueError as e:
        logger.error(str(e))
        print(f"ERROR: {e}")
        return 1

    with open(output_dir / "report.json", "w") as f:
        json.dump(result.report.to_dict(), f, indent=2)

    report = result.report
    print(f"Average radiance: {report.average_radiance:f}")
    print(f"Average SG radiance: {report.average_sg_radiance:f}")
    print(f"Average SH radiance: {report.average_sh_radiance:f}")
    print(f"Average SG irradiance: {report.average_sg_irradiance:f}")
    print(f"Average SH irradiance: {report.average_sh_irradiance:f}")
    print(f"Average MC irradiance: {report.average_mc_irradiance:f}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
