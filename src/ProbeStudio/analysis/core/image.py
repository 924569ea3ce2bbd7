"""
Pixel buffer with sequential and parallel traversal.

Pixels are stored row-major as a (H, W, 4) float tensor (rgb + alpha).

                (0,0)       (W-1,0)
                    +-------+
                    |       |      x grows to the right, y grows downward,
                    +-------+      traversal visits the top row first.
                (0,H-1)     (W-1,H-1)
"""

import logging
import torch
from multiprocessing import Pool, cpu_count
from typing import Callable, Optional, Tuple

from einops import reduce

logger = logging.getLogger(__name__)

PixelPos = Tuple[int, int]
PixelFn = Callable[[torch.Tensor], Optional[torch.Tensor]]
PixelFn2D = Callable[[torch.Tensor, PixelPos], Optional[torch.Tensor]]


def to_pixel(value, dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """
    Convert a callback result to a pixel. An rgb value gets an alpha of 1.0.

    :params value (3) or (4)
    :returns pixel (4)
    """
    value = torch.as_tensor(value, dtype=dtype)
    if value.shape[-1] == 3:
        value = torch.cat([value, torch.ones_like(value[..., :1])], dim=-1)
    return value


def _visit_rows(rows: torch.Tensor, y_start: int, fn: PixelFn2D) -> torch.Tensor:
    """
    Apply fn to every pixel of a block of rows in row-major order, in place.

    :params rows (h, W, 4): the rows to visit
    :params y_start: image row of rows[0]
    """
    for dy in range(rows.shape[0]):
        for x in range(rows.shape[1]):
            pixel = rows[dy, x]
            result = fn(pixel, (x, y_start + dy))
            if result is not None:
                pixel.copy_(to_pixel(result, rows.dtype))
    return rows


# Set once per worker by the pool initializer so the callable is pickled once per process.
_worker_fn: Optional[PixelFn2D] = None


def _init_worker(fn: PixelFn2D):
    global _worker_fn
    _worker_fn = fn
    # One intra-op thread per worker, the pool already covers the cores.
    torch.set_num_threads(1)


def _shade_rows(task: Tuple[int, torch.Tensor]) -> Tuple[int, torch.Tensor]:
    y_start, rows = task
    return y_start, _visit_rows(rows, y_start, _worker_fn)


class Image:
    """A fixed size rgba image that owns its pixel tensor."""

    def __init__(self, width: int, height: int, pixels: Optional[torch.Tensor] = None):
        if width <= 0 or height <= 0:
            raise ValueError(f'Image size must be positive, got width:{width} height:{height}')

        self.width = width
        self.height = height

        if pixels is None:
            self.pixels = torch.zeros((height, width, 4), dtype=torch.float32)
        else:
            assert pixels.shape == (height, width, 4), f'Expected pixels of shape {(height, width, 4)}, got {tuple(pixels.shape)}'
            self.pixels = pixels

    @classmethod
    def from_tensor(cls, tensor: torch.Tensor) -> "Image":
        """
        :params tensor (H, W, 3) or (H, W, 4). Rgb input gets an alpha of 1.0.
        """
        H, W, C = tensor.shape
        assert C in (3, 4), f'The number of channels C:{C} must be 3 or 4'
        pixels = to_pixel(tensor.to(torch.float32)).clone()
        return cls(W, H, pixels)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def at(self, pixel_pos: PixelPos) -> torch.Tensor:
        """Mutable (4) view of the pixel at (x, y)."""
        x, y = pixel_pos
        return self.pixels[y, x]

    def rgb(self) -> torch.Tensor:
        """(H, W, 3) copy of the color channels."""
        return self.pixels[..., :3].clone()

    # -----------------------------
    # Traversal
    # -----------------------------

    def for_pixels(self, fn: PixelFn):
        """
        Visit every pixel once, top row first, left to right.
        fn receives a mutable (4) view; a returned value replaces the pixel.
        """
        _visit_rows(self.pixels, 0, lambda pixel, pixel_pos: fn(pixel))

    def for_pixels_2d(self, fn: PixelFn2D):
        """Same order as for_pixels, fn additionally receives the (x, y) coordinate."""
        _visit_rows(self.pixels, 0, fn)

    def parallel_for_pixels_2d(self, fn: PixelFn2D, processes: Optional[int] = None):
        """
        Visit every pixel exactly once, with blocks of rows spread over a process pool.

        fn is shipped to the workers, so it has to be picklable (a module level function
        or a callable object). Each worker shades a copy of its rows and sends them back,
        the output of a pixel may only depend on its own value, its coordinate and data
        that fn holds read-only. There is no ordering guarantee between pixels.

        :params fn: called as fn(pixel, (x, y))
        :params processes: number of workers (default: cpu_count(), 1 runs in this process)
        """
        if processes is None:
            processes = cpu_count()

        if processes <= 1:
            self.for_pixels_2d(fn)
            return

        n_chunks = min(self.height, processes * 4)
        tasks = []
        y_start = 0
        for rows in torch.tensor_split(self.pixels, n_chunks, dim=0):
            tasks.append((y_start, rows.clone()))
            y_start += rows.shape[0]

        logger.debug(f"Shading {self.pixel_count} pixels in {len(tasks)} row blocks on {processes} processes")

        with Pool(processes=processes, initializer=_init_worker, initargs=(fn,)) as pool:
            results = pool.map(_shade_rows, tasks)

        for y_start, rows in results:
            self.pixels[y_start:y_start + rows.shape[0]] = rows

    # -----------------------------
    # Copy and lookup
    # -----------------------------

    def paste(self, source: "Image", offset: PixelPos):
        """
        Copy source into this image with its top left corner at offset (x, y).
        Source pixels falling outside this image are dropped.
        """
        offset_x, offset_y = offset
        x0, y0 = max(0, offset_x), max(0, offset_y)
        x1 = min(self.width, offset_x + source.width)
        y1 = min(self.height, offset_y + source.height)
        if x0 >= x1 or y0 >= y1:
            return

        self.pixels[y0:y1, x0:x1] = source.pixels[y0 - offset_y:y1 - offset_y, x0 - offset_x:x1 - offset_x]

    def sample_nearest(self, uv: torch.Tensor) -> torch.Tensor:
        """
        Nearest pixel lookup.

        :params uv (..., 2): normalized coordinate in [0, 1]^2, values outside are clamped
        :returns pixel (..., 4)
        """
        uv = torch.as_tensor(uv, dtype=self.pixels.dtype)
        x = torch.clamp(torch.floor(uv[..., 0] * self.width), 0, self.width - 1).long()
        y = torch.clamp(torch.floor(uv[..., 1] * self.height), 0, self.height - 1).long()
        return self.pixels[y, x]


def compute_average(image: Image) -> torch.Tensor:
    """
    :returns average (4): mean of every pixel, per channel
    """
    return reduce(image.pixels, "h w c -> c", "mean")
