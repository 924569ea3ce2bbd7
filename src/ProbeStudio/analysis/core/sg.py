import math
import torch
from dataclasses import replace
from functools import partial, reduce
from typing import Iterable, Union

from einops import einsum

from ..datatypes import DirectionSample, SphericalGaussian
from .sampling import sample_vogels_sphere

TWO_PI = 2.0 * math.pi
FOUR_PI = 4.0 * math.pi

# Below this |lambda_a * p_a + lambda_b * p_b| the closed form of (1 - e^-2d) / d is replaced by its series.
SG_DOT_SERIES_THRESHOLD = 1e-4

# -----------------------------
# Evaluation
# -----------------------------

def sg_evaluate(axis: torch.Tensor, sharpness: Union[float, torch.Tensor], direction: torch.Tensor) -> torch.Tensor:
    """
    Amplitude free lobe exp(lambda * (dot(p, v) - 1)).

    :params axis (..., 3): unit lobe axis p
    :params sharpness (...): lambda
    :params direction (..., 3): unit direction v
    :returns weight (...): 1.0 along the axis, falling off with the angle to it
    """
    cos_angle = torch.sum(axis * direction, dim=-1)
    return torch.exp(sharpness * (cos_angle - 1.0))


def sg_evaluate_lobe(lobe: SphericalGaussian, direction: torch.Tensor) -> torch.Tensor:
    """
    :returns value (..., 3): lobe amplitude scaled by its falloff at direction
    """
    return sg_evaluate(lobe.axis, lobe.sharpness, direction)[..., None] * lobe.amplitude


def sg_reconstruct(lobes: SphericalGaussian, direction: torch.Tensor) -> torch.Tensor:
    """
    Sum of K lobes at one or many directions.

    :params lobes: K lobes, axis (K, 3)
    :params direction (..., 3)
    :returns radiance (..., 3)
    """
    weights = sg_evaluate(lobes.axis, lobes.sharpness, direction[..., None, :])  # (..., K)
    return einsum(weights, lobes.amplitude, "... k, k c -> ... c")


# -----------------------------
# Closed form integrals
# -----------------------------

def sg_integral(sharpness: Union[float, torch.Tensor]) -> torch.Tensor:
    """
    Integral of an amplitude 1 lobe over the sphere: 2pi * (1 - exp(-2 lambda)) / lambda.

    Source:
    [1] Wang et al. 2009, All-Frequency Rendering of Dynamic, Spatially-Varying Reflectance, Equation 4.
    """
    sharpness = torch.as_tensor(sharpness, dtype=torch.float32)
    return TWO_PI * -torch.expm1(-2.0 * sharpness) / sharpness


def _one_minus_exp_over(d: torch.Tensor) -> torch.Tensor:
    """(1 - exp(-2d)) / d, tending to 2 as d -> 0."""
    small = d < SG_DOT_SERIES_THRESHOLD
    safe_d = torch.where(small, torch.ones_like(d), d)
    closed_form = -torch.expm1(-2.0 * safe_d) / safe_d
    series = 2.0 - 2.0 * d + (4.0 / 3.0) * d * d
    return torch.where(small, series, closed_form)


def sg_dot(a: SphericalGaussian, b: SphericalGaussian) -> torch.Tensor:
    """
    Integral over the sphere of the product of two lobes.

        d = |lambda_a p_a + lambda_b p_b|
        <a, b> = 2pi mu_a mu_b exp(d - lambda_a - lambda_b) (1 - exp(-2d)) / d

    The exponent never exceeds 0, so large sharpness does not overflow. d reaches 0 only for
    opposed axes of equal sharpness, where the series of (1 - exp(-2d)) / d takes over.

    :params a, b: lobes whose fields broadcast against each other
    :returns value (..., 3)

    Source:
    [2] Tsai and Shih 2006, All-Frequency Precomputed Radiance Transfer using Spherical Radial Basis Functions.
    """
    um = a.sharpness[..., None] * a.axis + b.sharpness[..., None] * b.axis
    um_length = torch.linalg.norm(um, dim=-1)
    expo = torch.exp(um_length - a.sharpness - b.sharpness)
    scale = TWO_PI * expo * _one_minus_exp_over(um_length)
    return scale[..., None] * a.amplitude * b.amplitude


def sg_find_mu(sharpness: Union[float, torch.Tensor], integral: Union[float, torch.Tensor]) -> torch.Tensor:
    """
    Amplitude that gives a lobe of this sharpness the requested integral over the sphere.
    """
    sharpness = torch.as_tensor(sharpness, dtype=torch.float32)
    return sharpness * integral / (TWO_PI * -torch.expm1(-2.0 * sharpness))


# -----------------------------
# Lobe construction
# -----------------------------

def make_sg_lobes(lobe_count: int, sharpness: float) -> SphericalGaussian:
    """
    K lobes with Vogel spiral axes, a shared sharpness and zero amplitude.

    :returns lobes: axis (K, 3), sharpness (K), amplitude (K, 3)
    """
    if lobe_count <= 0:
        raise ValueError(f'lobe_count must be positive, got {lobe_count}')
    if sharpness <= 0:
        raise ValueError(f'sharpness must be positive, got {sharpness}')

    axis = sample_vogels_sphere(torch.arange(lobe_count), lobe_count)
    return SphericalGaussian(
        axis=axis,
        sharpness=torch.full((lobe_count,), float(sharpness), dtype=torch.float32),
        amplitude=torch.zeros((lobe_count, 3), dtype=torch.float32))


def make_brdf_lobe(sharpness: float = 6.5, integral: float = math.pi) -> SphericalGaussian:
    """
    Lobe standing in for the clamped cosine of a Lambertian BRDF, calibrated so that it
    integrates to the same value as the cosine (pi). The axis is set per normal with orient_lobe.
    """
    mu = sg_find_mu(sharpness, integral)
    return SphericalGaussian(
        axis=torch.tensor([0.0, 0.0, 1.0]),
        sharpness=torch.tensor(float(sharpness)),
        amplitude=mu.expand(3).clone())


def sg_cosine_lobe() -> SphericalGaussian:
    """
    Fixed fit of the clamped cosine lobe.

    Source:
    [1] Wang et al. 2009, Section 4.1 (lambda = 2.133, mu = 1.17).
    """
    return SphericalGaussian(
        axis=torch.tensor([0.0, 0.0, 1.0]),
        sharpness=torch.tensor(2.133),
        amplitude=torch.full((3,), 1.17))


def orient_lobe(lobe: SphericalGaussian, axis: torch.Tensor) -> SphericalGaussian:
    return replace(lobe, axis=axis)


# -----------------------------
# Fitting
# -----------------------------

def sg_normalization(sharpness: Union[float, torch.Tensor]) -> torch.Tensor:
    """
    Scale from the Monte Carlo average of radiance * weight to a lobe amplitude.

    TODO: 4pi / integral ignores the lobe count and the overlap between neighbouring lobes,
    compare against a least squares fit before trusting the magnitude of SG reconstructions.
    """
    return FOUR_PI / sg_integral(sharpness)


def sg_accumulate(lobes: SphericalGaussian, sample: DirectionSample, sample_count: int) -> SphericalGaussian:
    """
    One step of the projection: amplitude += radiance * normalization * weight(direction) / sample_count.

    :returns lobes: a new value, the input lobes are left untouched
    """
    weight = sg_evaluate(lobes.axis, lobes.sharpness, sample.direction)  # (K)
    scale = sg_normalization(lobes.sharpness) * (weight / sample_count)  # (K)
    return replace(lobes, amplitude=lobes.amplitude + scale[..., None] * sample.radiance)


def fit_sg_lobes(lobes: SphericalGaussian, samples: Iterable[DirectionSample], sample_count: int) -> SphericalGaussian:
    """
    Monte Carlo projection of a sample stream onto fixed lobes. The samples are folded in order.

    :params lobes: axes and sharpness to fit, usually from make_sg_lobes
    :params samples: uniformly distributed (direction, radiance) samples
    :params sample_count: number of samples in the stream
    """
    if sample_count <= 0:
        raise ValueError(f'sample_count must be positive, got {sample_count}')

    return reduce(partial(sg_accumulate, sample_count=sample_count), samples, lobes)


# -----------------------------
# Irradiance
# -----------------------------

def sg_irradiance(lobes: SphericalGaussian, brdf: SphericalGaussian) -> torch.Tensor:
    """
    Diffuse convolution of K lobes: sum_k <lobe_k, brdf> / pi.

    :params lobes: K lobes, axis (K, 3)
    :params brdf: BRDF lobe oriented along the normal, axis (..., 3)
    :returns irradiance (..., 3)
    """
    oriented = SphericalGaussian(
        axis=brdf.axis[..., None, :],
        sharpness=brdf.sharpness[..., None],
        amplitude=brdf.amplitude[..., None, :])
    return torch.sum(sg_dot(lobes, oriented), dim=-2) / math.pi
