"""
Numerical unit tests for the low discrepancy sampling library.
"""

import math
import torch
import pytest

from ProbeStudio.analysis.core.sampling import (
    make_orthogonal_basis, radical_inverse_vdc, sample_cosine_hemisphere,
    sample_hammersley, sample_uniform_sphere, sample_vogels_sphere
)


def unit_length_allclose(directions: torch.Tensor, atol: float = 1e-5) -> bool:
    radial_length = torch.linalg.norm(directions, dim=-1)
    return torch.allclose(radial_length, torch.ones_like(radial_length), atol=atol)


def test_radical_inverse_known_values():
    """Bit reversal of 0, 1, 2, 3, 4 gives 0, 1/2, 1/4, 3/4, 1/8."""
    values = radical_inverse_vdc(torch.arange(5))
    expected = torch.tensor([0.0, 0.5, 0.25, 0.75, 0.125], dtype=torch.float64)
    assert torch.equal(values, expected)


def test_hammersley_is_pure():
    """Repeated calls with the same (index, count) are bit identical."""
    for index in [0, 1, 7, 123, 4095]:
        assert torch.equal(sample_hammersley(index, 4096), sample_hammersley(index, 4096))


def test_hammersley_batch_matches_scalar():
    count = 64
    batch = sample_hammersley(torch.arange(count), count)
    scalar = torch.stack([sample_hammersley(i, count) for i in range(count)])
    assert batch.shape == (count, 2)
    assert torch.equal(batch, scalar)
    assert torch.allclose(batch[:, 0], torch.arange(count, dtype=torch.float32) / count)


def test_vogels_sphere_is_pure_and_on_sphere():
    count = 12
    points = sample_vogels_sphere(torch.arange(count), count)
    single = torch.stack([sample_vogels_sphere(i, count) for i in range(count)])

    assert torch.equal(points, sample_vogels_sphere(torch.arange(count), count))
    assert torch.allclose(points, single, atol=1e-7)
    assert unit_length_allclose(points)
    # z is spread evenly between the poles
    assert torch.allclose(points[:, 2].mean(), torch.tensor(0.0), atol=1e-6)
    assert points[0, 2] > 0.9 and points[-1, 2] < -0.9


def test_uniform_sphere_covers_sphere():
    count = 4096
    directions = sample_uniform_sphere(sample_hammersley(torch.arange(count), count))
    assert unit_length_allclose(directions)
    assert torch.allclose(directions.mean(dim=0), torch.zeros(3), atol=1e-2)
    # uniform on the sphere: E[z^2] = 1/3
    assert abs((directions[:, 2] ** 2).mean().item() - 1.0 / 3.0) < 1e-2


def test_cosine_hemisphere_distribution():
    count = 4096
    directions = sample_cosine_hemisphere(sample_hammersley(torch.arange(count), count))
    assert unit_length_allclose(directions)
    assert torch.all(directions[:, 2] >= 0.0)
    # cosine weighted: E[cos(theta)] = 2/3
    assert abs(directions[:, 2].mean().item() - 2.0 / 3.0) < 1e-2
    assert torch.allclose(directions[:, :2].mean(dim=0), torch.zeros(2), atol=1e-2)


def test_cosine_hemisphere_centre_maps_to_pole():
    direction = sample_cosine_hemisphere(torch.tensor([0.5, 0.5]))
    assert torch.allclose(direction, torch.tensor([0.0, 0.0, 1.0]))


@pytest.mark.parametrize("normal", [
    [0.0, 0.0, 1.0],
    [0.0, 0.0, -1.0],
    [1.0, 0.0, 0.0],
    [0.0, 1.0, 0.0],
    [1.0, 2.0, 3.0],
    [-0.3, 0.1, -0.9],
])
def test_make_orthogonal_basis(normal):
    normal = torch.tensor(normal)
    normal = normal / torch.linalg.norm(normal)
    basis = make_orthogonal_basis(normal)

    assert basis.shape == (3, 3)
    assert torch.allclose(basis.T @ basis, torch.eye(3), atol=1e-5)
    assert torch.allclose(basis[:, 2], normal)
    assert math.isclose(torch.linalg.det(basis).item(), 1.0, abs_tol=1e-5)
    # local +z maps onto the normal
    assert torch.allclose(basis @ torch.tensor([0.0, 0.0, 1.0]), normal, atol=1e-6)


def test_make_orthogonal_basis_batch():
    count = 256
    normals = sample_uniform_sphere(sample_hammersley(torch.arange(count), count))
    bases = make_orthogonal_basis(normals)

    assert bases.shape == (count, 3, 3)
    identity = torch.eye(3).expand(count, 3, 3)
    assert torch.allclose(bases.transpose(-1, -2) @ bases, identity, atol=1e-5)
