import math
import torch
from functools import partial, reduce
from typing import Iterable, Union

from einops import einsum

from ..datatypes import DirectionSample, SphericalHarmonicsL2

SH_L_MAX = 2
FOUR_PI = 4.0 * math.pi

# -----------------------------
# Spherical Harmonic Indexing
# -----------------------------
def sph_indices_total(l_max: int) -> int:  # (l_max + 1)^2
    return (l_max + 1) * (l_max + 1)

def sph_index_from_lm(l: int, m: int) -> int:  # noqa: E741
    # band l occupies indices [l*l, (l+1)^2 - 1], with m mapped as (l + m)
    # => index = l*l + (l + m) = l*l + l + m
    return l * l + l + m

def l_from_index(idx: int) -> int:
    # exact integer sqrt: largest l with l*l <= idx
    return math.isqrt(idx)

def lm_from_index(idx: int) -> tuple[int, int]:
    l = l_from_index(idx)  # noqa: E741
    m = idx - (l * l + l)
    return l, m


# -----------------------------
# Cartesian to Spherical Harmonic Basis
# -----------------------------

def sh_evaluate_basis(direction: torch.Tensor) -> torch.Tensor:
    """
    Real spherical harmonic basis up to l = 2 evaluated at direction.

    :params direction (..., 3): unit direction
    :returns Ylm (..., 9): ordered by sph_index_from_lm

    Source:
    [1] Sloan, Stupid Spherical Harmonics (SH) Tricks, Appendix A2 Polynomial Forms of SH Basis.
    """
    x, y, z = direction[..., 0], direction[..., 1], direction[..., 2]

    c00 = 0.282095  # 0.5 * sqrt(1/pi)
    c1 = 0.48860251  # sqrt(3/(4*pi))
    c2_2 = 1.092548  # 0.5 * sqrt(15/pi)
    c2_0 = 0.315392  # 0.25 * sqrt(5/pi)
    c2_2_half = 0.546274  # 0.25 * sqrt(15/pi)

    terms = {
        (0, 0): c00 * torch.ones_like(x),
        (1, -1): -c1 * y,
        (1, 0): c1 * z,
        (1, 1): -c1 * x,
        (2, -2): c2_2 * x * y,
        (2, -1): -c2_2 * y * z,
        (2, 0): c2_0 * (3.0 * z * z - 1.0),
        (2, 1): -c2_2 * x * z,
        (2, 2): c2_2_half * (x * x - y * y),
    }

    basis = [None] * sph_indices_total(SH_L_MAX)
    for (l, m), value in terms.items():  # noqa: E741
        basis[sph_index_from_lm(l, m)] = value
    return torch.stack(basis, dim=-1)


def sh_diffuse_band_scale(dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """
    Convolution of each band with the clamped cosine lobe: pi, 2pi/3, pi/4 for l = 0, 1, 2.

    :returns scale (9)

    Source:
    [2] Ramamoorthi and Hanrahan 2001, An Efficient Representation for Irradiance Environment Maps, Equation 8.
    """
    band_scale = [math.pi, 2.0 * math.pi / 3.0, math.pi / 4.0]
    n_terms = sph_indices_total(SH_L_MAX)
    return torch.tensor([band_scale[lm_from_index(i)[0]] for i in range(n_terms)], dtype=dtype)


# -----------------------------
# Projection
# -----------------------------

def sh_add_weighted(coeffs: SphericalHarmonicsL2, basis_values: torch.Tensor, weight: Union[float, torch.Tensor]) -> SphericalHarmonicsL2:
    """
    coeffs + weight * basis_values, as a new value.

    :params basis_values (9)
    :params weight (3) or scalar
    """
    weight = torch.as_tensor(weight, dtype=coeffs.coeffs.dtype)
    if weight.dim() == 0:
        weight = weight.expand(3)
    return SphericalHarmonicsL2(coeffs=coeffs.coeffs + einsum(basis_values, weight, "n, c -> n c"))


def sh_accumulate(coeffs: SphericalHarmonicsL2, sample: DirectionSample, sample_count: int) -> SphericalHarmonicsL2:
    """One Monte Carlo projection step for a uniformly distributed sample."""
    return sh_add_weighted(coeffs, sh_evaluate_basis(sample.direction), sample.radiance * (FOUR_PI / sample_count))


def project_sh(samples: Iterable[DirectionSample], sample_count: int) -> SphericalHarmonicsL2:
    """
    Project a stream of uniformly distributed samples onto the L2 basis, folding them in order.
    """
    if sample_count <= 0:
        raise ValueError(f'sample_count must be positive, got {sample_count}')

    return reduce(partial(sh_accumulate, sample_count=sample_count), samples, SphericalHarmonicsL2.zeros())


# -----------------------------
# Reconstruction
# -----------------------------

def sh_evaluate(coeffs: SphericalHarmonicsL2, direction: torch.Tensor) -> torch.Tensor:
    """
    :params direction (..., 3)
    :returns radiance (..., 3)
    """
    return einsum(sh_evaluate_basis(direction), coeffs.coeffs, "... n, n c -> ... c")


def sh_evaluate_diffuse(coeffs: SphericalHarmonicsL2, direction: torch.Tensor) -> torch.Tensor:
    """
    Radiance convolved with the clamped cosine, evaluated at the normal direction.
    The result is not divided by pi.

    :params direction (..., 3)
    :returns irradiance (..., 3)
    """
    basis = sh_evaluate_basis(direction) * sh_diffuse_band_scale(coeffs.coeffs.dtype)
    return einsum(basis, coeffs.coeffs, "... n, n c -> ... c")


def sh_dot(a: SphericalHarmonicsL2, b: SphericalHarmonicsL2) -> torch.Tensor:
    """
    The integral of the product of two spherical harmonic functions is the dot product of their coefficients.

    :returns value (3): one per color
    """
    return torch.sum(a.coeffs * b.coeffs, dim=0)
