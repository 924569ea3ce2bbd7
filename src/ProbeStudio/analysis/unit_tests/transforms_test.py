import math
import torch
import pytest

from ProbeStudio.analysis.utils.transforms import (
    cartesian_to_lat_long_texcoord, lat_long_texcoord_to_cartesian, pixel_direction, pixel_to_texcoord
)


def texcoord_allclose(uv_a: torch.Tensor, uv_b: torch.Tensor, atol: float = 1e-5) -> bool:
    """
    Check if two lat-long texture coordinates are close.

    u wraps around at 0 / 1 and is undefined at the poles (v = 0 or v = 1), so it is
    compared on the unit circle and ignored where sin(pi * v) vanishes.
    """
    u_a, v_a = uv_a[..., 0], uv_a[..., 1]
    u_b, v_b = uv_b[..., 0], uv_b[..., 1]

    v_close = torch.abs(v_a - v_b) <= atol

    du = 2.0 * math.pi * (u_a - u_b)
    du_wrapped = torch.atan2(torch.sin(du), torch.cos(du)) / (2.0 * math.pi)
    at_pole = torch.sin(math.pi * v_a) <= atol
    u_close = (torch.abs(du_wrapped) <= atol) | at_pole

    return bool(torch.all(v_close & u_close))


def texcoord_grid(width: int, height: int) -> torch.Tensor:
    x, y = torch.meshgrid(torch.arange(width), torch.arange(height), indexing="xy")
    return torch.stack([(x + 0.5) / width, (y + 0.5) / height], dim=-1)


def test_texcoord_roundtrip():
    """texcoord -> direction -> texcoord returns the original texture coordinate."""
    uv = texcoord_grid(64, 32)
    directions = lat_long_texcoord_to_cartesian(uv)

    assert directions.shape == (32, 64, 3)
    assert texcoord_allclose(cartesian_to_lat_long_texcoord(directions), uv)


def test_texcoord_to_cartesian_radial_length():
    """Every texture coordinate, poles and seam included, maps onto the unit sphere."""
    u, v = torch.meshgrid(torch.linspace(0.0, 1.0, 65), torch.linspace(0.0, 1.0, 33), indexing="xy")
    directions = lat_long_texcoord_to_cartesian(torch.stack([u, v], dim=-1))

    radial_length = torch.linalg.norm(directions, dim=-1)
    assert torch.allclose(radial_length, torch.ones_like(radial_length), atol=1e-5), 'Radial length not close to 1.0'


def test_direction_roundtrip():
    torch.manual_seed(0)
    count = 1000
    directions = torch.randn(count, 3)
    directions = directions / torch.linalg.norm(directions, dim=-1, keepdim=True)
    converted_back = lat_long_texcoord_to_cartesian(cartesian_to_lat_long_texcoord(directions))
    # acos loses precision close to the poles
    assert torch.allclose(converted_back, directions, atol=1e-3)


@pytest.mark.parametrize("direction, uv", [
    ([0.0, 0.0, 1.0], [0.5, 0.5]),
    ([1.0, 0.0, 0.0], [0.75, 0.5]),
    ([-1.0, 0.0, 0.0], [0.25, 0.5]),
    ([0.0, 1.0, 0.0], [0.5, 0.0]),
    ([0.0, -1.0, 0.0], [0.5, 1.0]),
])
def test_lat_long_layout(direction, uv):
    assert texcoord_allclose(cartesian_to_lat_long_texcoord(torch.tensor(direction)), torch.tensor(uv))


def test_back_direction_is_on_the_seam():
    u = cartesian_to_lat_long_texcoord(torch.tensor([0.0, 0.0, -1.0]))[0].item()
    assert math.isclose(u, 0.0, abs_tol=1e-6) or math.isclose(u, 1.0, abs_tol=1e-6)


def test_pixel_to_texcoord_uses_pixel_centres():
    assert torch.allclose(pixel_to_texcoord((0, 0), (4, 2)), torch.tensor([0.125, 0.25]))
    assert torch.allclose(pixel_to_texcoord((3, 1), (4, 2)), torch.tensor([0.875, 0.75]))


def test_pixel_direction():
    width, height = 16, 8
    for y in range(height):
        for x in range(width):
            direction = pixel_direction((x, y), (width, height))
            assert math.isclose(torch.linalg.norm(direction).item(), 1.0, abs_tol=1e-5)

    # The top row looks up, the bottom row looks down
    assert pixel_direction((0, 0), (width, height))[1] > 0.9
    assert pixel_direction((0, height - 1), (width, height))[1] < -0.9
