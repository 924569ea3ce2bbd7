"""
Radiance sources: functions from directions (..., 3) to rgb radiance (..., 3).

They are plain dataclasses with __call__ so that they can be shipped to worker processes.
"""

import torch
from dataclasses import dataclass
from typing import Callable, Tuple

from einops import repeat

from ..core.image import Image
from ..utils.transforms import cartesian_to_lat_long_texcoord

RadianceFn = Callable[[torch.Tensor], torch.Tensor]


@dataclass
class EnvironmentMap:
    """Nearest neighbour lookup into a latitude-longitude image."""
    image: Image

    def __call__(self, direction: torch.Tensor) -> torch.Tensor:
        uv = cartesian_to_lat_long_texcoord(direction)
        return self.image.sample_nearest(uv)[..., :3]


@dataclass
class ConstantRadiance:
    """The same radiance from every direction."""
    color: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __call__(self, direction: torch.Tensor) -> torch.Tensor:
        color = torch.tensor(self.color, dtype=direction.dtype)
        return color.expand(*direction.shape[:-1], 3).clone()


@dataclass
class DirectionalRadiance:
    """A sharp highlight: intensity * max(0, dot(axis, direction))^exponent."""
    axis: Tuple[float, float, float] = (0.0, 0.0, -1.0)
    exponent: float = 100.0
    intensity: float = 10.0

    def __call__(self, direction: torch.Tensor) -> torch.Tensor:
        axis = torch.tensor(self.axis, dtype=direction.dtype)
        cos_angle = torch.clamp(torch.sum(direction * axis, dim=-1), min=0.0)
        value = self.intensity * torch.pow(cos_angle, self.exponent)
        return repeat(value, "... -> ... c", c=3)


SYNTHETIC_RADIANCE = {
    "constant": ConstantRadiance,
    "directional": DirectionalRadiance,
}


def make_synthetic_radiance(name: str) -> RadianceFn:
    if name not in SYNTHETIC_RADIANCE:
        raise ValueError(f"Unknown synthetic radiance '{name}', expected one of {sorted(SYNTHETIC_RADIANCE)}")
    return SYNTHETIC_RADIANCE[name]()
