"""
Fit SG and SH probes to a radiance source and render the reconstructions.

1. Project: one sequential fold over Hammersley samples feeds both bases.
2. Reconstruct: every output image is shaded per pixel through Image.parallel_for_pixels_2d.
   Shaders are dataclasses holding the read-only fitted state, so each pixel only depends on its coordinate.
"""

import logging
import math
import time
import torch
from dataclasses import dataclass
from functools import partial, reduce
from typing import Iterator, Optional, Tuple

from einops import einsum
from tqdm import tqdm

from ..core.image import Image, PixelPos, compute_average
from ..core.sampling import make_orthogonal_basis, sample_cosine_hemisphere, sample_hammersley, sample_uniform_sphere
from ..core.sg import make_brdf_lobe, make_sg_lobes, orient_lobe, sg_accumulate, sg_cosine_lobe, sg_irradiance, sg_reconstruct
from ..core.sph import sh_accumulate, sh_evaluate, sh_evaluate_diffuse
from ..datatypes import (DirectionSample, ProbeImages, ProbeReport, ProbeResult, ProbeSettings, ProbeState,
                         SphericalGaussian, SphericalHarmonicsL2)
from ..utils.transforms import pixel_direction
from .radiance import RadianceFn

logger = logging.getLogger(__name__)

# -----------------------------
# Projection
# -----------------------------

def generate_direction_samples(radiance_fn: RadianceFn, sample_count: int) -> Iterator[DirectionSample]:
    """
    Uniform sphere directions over a Hammersley set, paired with the radiance seen along them.
    The whole set is generated and looked up as one batch, then streamed in index order.
    """
    directions = sample_uniform_sphere(sample_hammersley(torch.arange(sample_count), sample_count))  # (N, 3)
    radiance = radiance_fn(directions)  # (N, 3)
    for direction, value in zip(directions, radiance):
        yield DirectionSample(direction=direction, radiance=value)


def accumulate_probe(state: ProbeState, sample: DirectionSample, sample_count: int) -> ProbeState:
    lobes, sh_coeffs = state
    return sg_accumulate(lobes, sample, sample_count), sh_accumulate(sh_coeffs, sample, sample_count)


def fit_probe(radiance_fn: RadianceFn, settings: ProbeSettings, show_progress: bool = False) -> ProbeState:
    """
    Project a radiance source onto settings.lobe_count SG lobes and L2 SH in a single pass.

    :returns lobes, sh_coeffs
    """
    if settings.sample_count <= 0:
        raise ValueError(f'sample_count must be positive, got {settings.sample_count}')

    lobes = make_sg_lobes(settings.lobe_count, settings.sharpness)
    samples = generate_direction_samples(radiance_fn, settings.sample_count)
    samples = tqdm(samples, total=settings.sample_count, desc="Projecting radiance", disable=not show_progress)

    return reduce(partial(accumulate_probe, sample_count=settings.sample_count), samples,
                  (lobes, SphericalHarmonicsL2.zeros()))


def make_brdf(settings: ProbeSettings) -> SphericalGaussian:
    if settings.brdf == "cosine":
        return sg_cosine_lobe()
    if settings.brdf == "fitted":
        return make_brdf_lobe(settings.brdf_sharpness, math.pi)
    raise ValueError(f"Unknown brdf '{settings.brdf}', expected 'fitted' or 'cosine'")


# -----------------------------
# Per pixel shaders
# -----------------------------

@dataclass
class RadianceShader:
    radiance_fn: RadianceFn
    size: Tuple[int, int]

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        return self.radiance_fn(pixel_direction(pixel_pos, self.size))


@dataclass
class SgRadianceShader:
    lobes: SphericalGaussian
    size: Tuple[int, int]

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        return sg_reconstruct(self.lobes, pixel_direction(pixel_pos, self.size))


@dataclass
class ShRadianceShader:
    sh_coeffs: SphericalHarmonicsL2
    size: Tuple[int, int]

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        radiance = sh_evaluate(self.sh_coeffs, pixel_direction(pixel_pos, self.size))
        return torch.clamp(radiance, min=0.0)


@dataclass
class SgIrradianceShader:
    lobes: SphericalGaussian
    brdf: SphericalGaussian
    size: Tuple[int, int]

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        normal = pixel_direction(pixel_pos, self.size)
        return sg_irradiance(self.lobes, orient_lobe(self.brdf, normal))


@dataclass
class ShIrradianceShader:
    sh_coeffs: SphericalHarmonicsL2
    size: Tuple[int, int]

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        irradiance = sh_evaluate_diffuse(self.sh_coeffs, pixel_direction(pixel_pos, self.size)) / math.pi
        return torch.clamp(irradiance, min=0.0)


@dataclass
class McIrradianceShader:
    """
    Reference irradiance (divided by pi): the mean radiance over cosine distributed directions
    around the normal. The same local Hammersley directions are rotated to every normal.
    """
    radiance_fn: RadianceFn
    hemisphere_directions: torch.Tensor  # (N, 3) around +z
    size: Tuple[int, int]

    @classmethod
    def create(cls, radiance_fn: RadianceFn, sample_count: int, size: Tuple[int, int]) -> "McIrradianceShader":
        if sample_count <= 0:
            raise ValueError(f'sample_count must be positive, got {sample_count}')
        uv = sample_hammersley(torch.arange(sample_count), sample_count)
        return cls(radiance_fn=radiance_fn, hemisphere_directions=sample_cosine_hemisphere(uv), size=size)

    def __call__(self, pixel: torch.Tensor, pixel_pos: PixelPos) -> torch.Tensor:
        basis = make_orthogonal_basis(pixel_direction(pixel_pos, self.size))  # (3, 3)
        directions = einsum(basis, self.hemisphere_directions, "i j, n j -> n i")  # (N, 3)
        return torch.mean(self.radiance_fn(directions), dim=0)


# -----------------------------
# Rendering
# -----------------------------

def render_image(shader, size: Tuple[int, int], processes: Optional[int] = None) -> Image:
    width, height = size
    image = Image(width, height)
    image.parallel_for_pixels_2d(shader, processes=processes)
    return image


def make_contact_sheet(images: ProbeImages) -> Image:
    """
    3x2 grid of equally sized images.

        radiance      | radiance SH   | radiance SG
        irradiance MC | irradiance SH | irradiance SG
    """
    width, height = images.radiance.size
    combined = Image(width * 3, height * 2)

    combined.paste(images.radiance, (0, 0))
    combined.paste(images.radiance_sh, (width, 0))
    combined.paste(images.radiance_sg, (width * 2, 0))

    combined.paste(images.irradiance_mc, (0, height))
    combined.paste(images.irradiance_sh, (width, height))
    combined.paste(images.irradiance_sg, (width * 2, height))

    return combined


def build_report(images: ProbeImages, timing: dict) -> ProbeReport:
    def red_average(image: Image) -> float:
        return compute_average(image)[0].item()

    return ProbeReport(
        average_radiance=red_average(images.radiance),
        average_sg_radiance=red_average(images.radiance_sg),
        average_sh_radiance=red_average(images.radiance_sh),
        average_sg_irradiance=red_average(images.irradiance_sg),
        average_sh_irradiance=red_average(images.irradiance_sh),
        average_mc_irradiance=red_average(images.irradiance_mc),
        timing=timing)


def render_probe(radiance_fn: RadianceFn, settings: ProbeSettings, show_progress: bool = False) -> ProbeResult:
    """
    Fit both bases to radiance_fn and render every reconstruction at settings.size.
    """
    size = settings.size
    timing = {}

    start_time = time.time()
    logger.info(f"Projecting {settings.sample_count} samples onto {settings.lobe_count} SG lobes (lambda {settings.sharpness}) and L2 SH...")
    lobes, sh_coeffs = fit_probe(radiance_fn, settings, show_progress=show_progress)
    timing['projection'] = time.time() - start_time
    logger.info(f"Projection complete in {timing['projection']:.2f} seconds.")
    logger.debug(f"SG amplitudes: {lobes.amplitude.tolist()}")
    logger.debug(f"SH coefficients: {sh_coeffs.coeffs.tolist()}")

    start_time = time.time()
    logger.info("Rendering radiance reconstructions...")
    radiance = render_image(RadianceShader(radiance_fn, size), size, settings.processes)
    radiance_sh = render_image(ShRadianceShader(sh_coeffs, size), size, settings.processes)
    radiance_sg = render_image(SgRadianceShader(lobes, size), size, settings.processes)
    timing['radiance'] = time.time() - start_time
    logger.info(f"Radiance reconstruction complete in {timing['radiance']:.2f} seconds.")

    start_time = time.time()
    logger.info(f"Rendering irradiance reconstructions with the '{settings.brdf}' BRDF lobe...")
    irradiance_sh = render_image(ShIrradianceShader(sh_coeffs, size), size, settings.processes)
    irradiance_sg = render_image(SgIrradianceShader(lobes, make_brdf(settings), size), size, settings.processes)
    timing['irradiance'] = time.time() - start_time
    logger.info(f"Irradiance reconstruction complete in {timing['irradiance']:.2f} seconds.")

    start_time = time.time()
    logger.info(f"Rendering Monte Carlo reference irradiance with {settings.mc_sample_count} samples per pixel...")
    mc_shader = McIrradianceShader.create(radiance_fn, settings.mc_sample_count, size)
    irradiance_mc = render_image(mc_shader, size, settings.processes)
    timing['monte_carlo'] = time.time() - start_time
    logger.info(f"Monte Carlo irradiance complete in {timing['monte_carlo']:.2f} seconds.")

    images = ProbeImages(
        radiance=radiance,
        radiance_sh=radiance_sh,
        radiance_sg=radiance_sg,
        irradiance_mc=irradiance_mc,
        irradiance_sh=irradiance_sh,
        irradiance_sg=irradiance_sg)

    return ProbeResult(
        lobes=lobes,
        sh_coeffs=sh_coeffs,
        images=images,
        combined=make_contact_sheet(images),
        report=build_report(images, timing))
