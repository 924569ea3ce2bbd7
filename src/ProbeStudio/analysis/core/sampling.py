import math
import torch
from typing import Union

# -----------------------------
# Deterministic point sequences
# -----------------------------
# Every generator is a pure function of (index, count) or of a unit-square coordinate.
# Indices may be python ints or integer tensors, so a whole sequence can be generated at once.

IndexLike = Union[int, torch.Tensor]

GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


def radical_inverse_vdc(index: IndexLike) -> torch.Tensor:
    """
    Van der Corput radical inverse in base 2 (32 bit reversal).

    :params index (...): non-negative sample index
    :returns fraction (...): float64 value in [0, 1)

    Source:
    [1] Hammersley Points on the Hemisphere (Holger Dammertz), radicalInverse_VdC.
    """
    bits = torch.as_tensor(index, dtype=torch.int64)
    bits = ((bits << 16) | (bits >> 16)) & 0xFFFFFFFF
    bits = ((bits & 0x55555555) << 1) | ((bits & 0xAAAAAAAA) >> 1)
    bits = ((bits & 0x33333333) << 2) | ((bits & 0xCCCCCCCC) >> 2)
    bits = ((bits & 0x0F0F0F0F) << 4) | ((bits & 0xF0F0F0F0) >> 4)
    bits = ((bits & 0x00FF00FF) << 8) | ((bits & 0xFF00FF00) >> 8)
    return bits.to(torch.float64) * 2.3283064365386963e-10  # / 0x100000000


def sample_hammersley(index: IndexLike, count: int) -> torch.Tensor:
    """
    The index-th point of a count-point Hammersley set.

    :params index (...): sample index in [0, count)
    :params count: number of points in the set
    :returns uv (..., 2): (index / count, radical_inverse(index))
    """
    u = torch.as_tensor(index, dtype=torch.float64) / count
    v = radical_inverse_vdc(index)
    return torch.stack([u, v], dim=-1).to(torch.float32)


def sample_vogels_sphere(index: IndexLike, count: int) -> torch.Tensor:
    """
    Place the index-th of count points on the unit sphere with a golden angle spiral.
    Each point covers roughly the same area, which makes it a data independent choice of SG lobe axes.

    :params index (...): point index in [0, count)
    :params count: number of points on the sphere
    :returns direction (..., 3)

    Source:
    [2] Vogel, A better way to construct the sunflower head.
    """
    i = torch.as_tensor(index, dtype=torch.float64)
    phi = i * GOLDEN_ANGLE
    z = 1.0 - (2.0 * i + 1.0) / count
    r = torch.sqrt(torch.clamp(1.0 - z * z, min=0.0))
    direction = torch.stack([r * torch.cos(phi), r * torch.sin(phi), z], dim=-1)
    return direction.to(torch.float32)


def sample_uniform_sphere(uv: torch.Tensor) -> torch.Tensor:
    """
    Map a unit square sample to a direction uniformly distributed over the sphere (inverse CDF).

    :params uv (..., 2)
    :returns direction (..., 3)
    """
    u, v = uv[..., 0], uv[..., 1]
    z = 1.0 - 2.0 * u
    r = torch.sqrt(torch.clamp(1.0 - z * z, min=0.0))
    phi = 2.0 * math.pi * v
    return torch.stack([r * torch.cos(phi), r * torch.sin(phi), z], dim=-1)


def sample_disk_concentric(uv: torch.Tensor) -> torch.Tensor:
    """
    Shirley-Chiu concentric mapping from the unit square to the unit disk.

    :params uv (..., 2)
    :returns point (..., 2)
    """
    offset = 2.0 * uv - 1.0
    ox, oy = offset[..., 0], offset[..., 1]

    use_x = torch.abs(ox) > torch.abs(oy)
    safe_ox = torch.where(ox == 0.0, torch.ones_like(ox), ox)
    safe_oy = torch.where(oy == 0.0, torch.ones_like(oy), oy)

    r = torch.where(use_x, ox, oy)
    theta = torch.where(use_x,
                        (math.pi / 4.0) * (oy / safe_ox),
                        (math.pi / 2.0) - (math.pi / 4.0) * (ox / safe_oy))

    return torch.stack([r * torch.cos(theta), r * torch.sin(theta)], dim=-1)


def sample_cosine_hemisphere(uv: torch.Tensor) -> torch.Tensor:
    """
    Map a unit square sample to the +z hemisphere with density proportional to cos(theta).

    :params uv (..., 2)
    :returns direction (..., 3)
    """
    disk = sample_disk_concentric(uv)
    x, y = disk[..., 0], disk[..., 1]
    z = torch.sqrt(torch.clamp(1.0 - x * x - y * y, min=0.0))
    return torch.stack([x, y, z], dim=-1)


def make_orthogonal_basis(normal: torch.Tensor) -> torch.Tensor:
    """
    Orthonormal frame whose third column is normal, so basis @ local maps +z onto normal.

    :params normal (..., 3): unit vector
    :returns basis (..., 3, 3): columns are (tangent, bitangent, normal)

    Source:
    [3] Duff et al. 2017, Building an Orthonormal Basis, Revisited.
    """
    x, y, z = normal[..., 0], normal[..., 1], normal[..., 2]
    sign = torch.where(z >= 0.0, torch.ones_like(z), -torch.ones_like(z))
    a = -1.0 / (sign + z)
    b = x * y * a

    tangent = torch.stack([1.0 + sign * x * x * a, sign * b, -sign * x], dim=-1)
    bitangent = torch.stack([b, sign + y * y * a, -y], dim=-1)

    return torch.stack([tangent, bitangent, normal], dim=-1)
