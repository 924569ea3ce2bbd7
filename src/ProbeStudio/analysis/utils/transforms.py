import math
import torch
from typing import Tuple


def cartesian_to_lat_long_texcoord(direction: torch.Tensor) -> torch.Tensor:
    """
    Convert a direction to the texture coordinate of a latitude-longitude environment map.

    Lat-long map (y up, viewer looking down +z at u = 0.5):

                        v = 0   +-------------------------------------------+
                                |+Y        +Y        +Y       +Y          +Y|
                                |                                           |
                        v = 0.5 |-Z        -X        +Z       +X          -Z|
                                |                                           |
                        v = 1   |-Y        -Y        -Y       -Y          -Y|
                                +-------------------------------------------+
                              u = 0      0.25       0.5      0.75          1

    :params direction (..., 3): unit direction
    :returns uv (..., 2): u = atan2(x, z) / 2pi + 0.5, v = acos(y) / pi
    """
    x, y, z = direction[..., 0], direction[..., 1], direction[..., 2]
    u = torch.atan2(x, z) / (2.0 * math.pi) + 0.5
    v = torch.acos(torch.clamp(y, -1.0, 1.0)) / math.pi
    return torch.stack([u, v], dim=-1)


def lat_long_texcoord_to_cartesian(uv: torch.Tensor) -> torch.Tensor:
    """
    Inverse of cartesian_to_lat_long_texcoord.

    :params uv (..., 2)
    :returns direction (..., 3)
    """
    theta = 2.0 * math.pi * (uv[..., 0] - 0.5)  # azimuth
    phi = math.pi * uv[..., 1]  # polar angle from +y
    sin_phi = torch.sin(phi)

    return torch.stack([sin_phi * torch.sin(theta), torch.cos(phi), sin_phi * torch.cos(theta)], dim=-1)


def pixel_to_texcoord(pixel_pos: Tuple[int, int], size: Tuple[int, int]) -> torch.Tensor:
    """
    Texture coordinate of a pixel centre.

    :params pixel_pos: (x, y)
    :params size: (width, height)
    :returns uv (2)
    """
    x, y = pixel_pos
    width, height = size
    return torch.tensor([(x + 0.5) / width, (y + 0.5) / height], dtype=torch.float32)


def pixel_direction(pixel_pos: Tuple[int, int], size: Tuple[int, int]) -> torch.Tensor:
    """
    Direction seen through a pixel centre of a lat-long image.

    :returns direction (3)
    """
    return lat_long_texcoord_to_cartesian(pixel_to_texcoord(pixel_pos, size))
