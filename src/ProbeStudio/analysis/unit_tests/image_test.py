"""
Unit tests for the Image container: traversal order, parallel shading, paste and lookup.
"""

import torch
import pytest

from ProbeStudio.analysis.core.image import Image, compute_average, to_pixel

WIDTH = 7
HEIGHT = 5


# Module level shaders so they can be pickled to pool workers
def coordinate_shader(pixel: torch.Tensor, pixel_pos) -> torch.Tensor:
    x, y = pixel_pos
    return torch.tensor([x, y, x + WIDTH * y, 1.0])


def increment_shader(pixel: torch.Tensor, pixel_pos) -> torch.Tensor:
    return pixel + 1.0


def filled_image(width: int, height: int, value: float) -> Image:
    return Image(width, height, torch.full((height, width, 4), value))


def test_image_size():
    image = Image(WIDTH, HEIGHT)
    assert image.size == (WIDTH, HEIGHT)
    assert image.pixel_count == WIDTH * HEIGHT
    assert image.pixels.shape == (HEIGHT, WIDTH, 4)
    assert torch.count_nonzero(image.pixels) == 0


@pytest.mark.parametrize("width, height", [(0, 4), (4, 0), (-1, 3)])
def test_image_invalid_size(width, height):
    with pytest.raises(ValueError):
        Image(width, height)


def test_from_tensor_adds_alpha():
    rgb = torch.rand(HEIGHT, WIDTH, 3)
    image = Image.from_tensor(rgb)
    assert image.size == (WIDTH, HEIGHT)
    assert torch.equal(image.rgb(), rgb)
    assert torch.all(image.pixels[..., 3] == 1.0)


def test_to_pixel():
    assert torch.equal(to_pixel([0.1, 0.2, 0.3]), torch.tensor([0.1, 0.2, 0.3, 1.0]))
    assert torch.equal(to_pixel([0.1, 0.2, 0.3, 0.5]), torch.tensor([0.1, 0.2, 0.3, 0.5]))


def test_for_pixels_2d_visits_rows_top_first():
    image = Image(WIDTH, HEIGHT)
    visited = []
    image.for_pixels_2d(lambda pixel, pixel_pos: visited.append(pixel_pos))

    assert visited == [(x, y) for y in range(HEIGHT) for x in range(WIDTH)]


def test_for_pixels_mutates_in_place():
    image = Image(WIDTH, HEIGHT)
    image.for_pixels(lambda pixel: pixel.fill_(2.0))
    assert torch.all(image.pixels == 2.0)

    # A returned rgb value replaces the pixel with an alpha of 1.0
    image.for_pixels(lambda pixel: pixel[:3] * 0.5)
    assert torch.all(image.rgb() == 1.0)
    assert torch.all(image.pixels[..., 3] == 1.0)


def test_at_is_a_view():
    image = Image(WIDTH, HEIGHT)
    image.at((3, 2))[:] = torch.tensor([1.0, 2.0, 3.0, 4.0])
    assert torch.equal(image.pixels[2, 3], torch.tensor([1.0, 2.0, 3.0, 4.0]))


@pytest.mark.parametrize("processes", [1, 2, 3])
def test_parallel_matches_sequential(processes):
    sequential = Image(WIDTH, HEIGHT)
    sequential.for_pixels_2d(coordinate_shader)

    parallel = Image(WIDTH, HEIGHT)
    parallel.parallel_for_pixels_2d(coordinate_shader, processes=processes)

    assert torch.equal(parallel.pixels, sequential.pixels)
    assert parallel.pixels[HEIGHT - 1, WIDTH - 1, 2] == WIDTH * HEIGHT - 1


@pytest.mark.parametrize("processes", [1, 2, 8])
def test_parallel_visits_every_pixel_once(processes):
    # More workers than rows still covers the image exactly once
    image = Image(WIDTH, HEIGHT)
    image.parallel_for_pixels_2d(increment_shader, processes=processes)
    assert torch.all(image.pixels == 1.0)


def test_paste_inside():
    target = Image(6, 4)
    target.paste(filled_image(2, 2, 1.0), (3, 1))

    assert torch.all(target.pixels[1:3, 3:5] == 1.0)
    assert target.pixels.sum() == 2 * 2 * 4


def test_paste_clips_to_bounds():
    target = Image(6, 4)
    target.paste(filled_image(3, 3, 1.0), (-1, -2))
    assert torch.all(target.pixels[0:1, 0:2] == 1.0)
    assert target.pixels.sum() == 1 * 2 * 4

    target = Image(6, 4)
    target.paste(filled_image(3, 3, 1.0), (5, 2))
    assert torch.all(target.pixels[2:4, 5:6] == 1.0)
    assert target.pixels.sum() == 2 * 1 * 4


def test_paste_outside_is_a_no_op():
    target = Image(6, 4)
    for offset in [(6, 0), (0, 4), (-3, 0), (0, -3), (100, 100)]:
        target.paste(filled_image(3, 3, 1.0), offset)
    assert torch.count_nonzero(target.pixels) == 0


def test_sample_nearest():
    image = Image(WIDTH, HEIGHT)
    image.for_pixels_2d(coordinate_shader)

    assert torch.equal(image.sample_nearest(torch.tensor([0.0, 0.0])), image.at((0, 0)))
    assert torch.equal(image.sample_nearest(torch.tensor([0.5, 0.5])), image.at((WIDTH // 2, HEIGHT // 2)))
    # Clamped at and beyond the edges
    assert torch.equal(image.sample_nearest(torch.tensor([1.0, 1.0])), image.at((WIDTH - 1, HEIGHT - 1)))
    assert torch.equal(image.sample_nearest(torch.tensor([-0.5, 2.0])), image.at((0, HEIGHT - 1)))


def test_sample_nearest_batch():
    image = Image(WIDTH, HEIGHT)
    image.for_pixels_2d(coordinate_shader)

    x, y = torch.meshgrid(torch.arange(WIDTH), torch.arange(HEIGHT), indexing="xy")
    uv = torch.stack([(x + 0.5) / WIDTH, (y + 0.5) / HEIGHT], dim=-1)
    assert torch.equal(image.sample_nearest(uv), image.pixels)


def test_compute_average():
    image = Image(2, 2, torch.tensor([
        [[1.0, 0.0, 0.0, 1.0], [3.0, 0.0, 0.0, 1.0]],
        [[5.0, 2.0, 0.0, 1.0], [7.0, 2.0, 0.0, 1.0]],
    ]))
    assert torch.allclose(compute_average(image), torch.tensor([4.0, 1.0, 0.0, 1.0]))
