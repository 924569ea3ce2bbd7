import os

os.environ['OPENCV_IO_ENABLE_OPENEXR'] = '1'

import cv2
import torch
import numpy as np
from pathlib import Path
from typing import Union

from ..core.image import Image


def read_hdr(hdr_path: Union[str, Path]) -> Image:
    """
    Read a Radiance .hdr (or .exr) latitude-longitude map as an rgba image with alpha 1.0.
    Integer formats are rescaled to [0, 1].

    :raises ValueError: when the file cannot be decoded
    """
    image = cv2.imread(str(hdr_path), cv2.IMREAD_ANYCOLOR | cv2.IMREAD_ANYDEPTH)
    if image is None:
        raise ValueError(f"Could not read HDR file: {hdr_path}")

    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    image_rgb = cv2.cvtColor(image[..., :3], cv2.COLOR_BGR2RGB)

    if np.issubdtype(image_rgb.dtype, np.integer):
        image_rgb = image_rgb.astype(np.float32) / np.iinfo(image_rgb.dtype).max

    return Image.from_tensor(torch.from_numpy(image_rgb.astype(np.float32)))


def write_exr(image: Image, exr_path: Union[str, Path]):
    """
    Write the color channels of an image to an exr file.
    """
    if not cv2.imwrite(str(exr_path), cv2.cvtColor(image.rgb().numpy(), cv2.COLOR_RGB2BGR)):
        raise ValueError(f"Could not write EXR file: {exr_path}")


def write_png(image: Image, png_path: Union[str, Path], gamma: float = 2.2, exposure: float = 0.0):
    """
    Tone map the color channels of an image and write them to a PNG.

    :param image: linear radiance image
    :param png_path: path to write the PNG file to
    :param gamma: gamma correction value (default 2.2)
    :param exposure: exposure adjustment in stops (default 0.0)
    """
    image_np = image.rgb().numpy()

    # Apply exposure adjustment
    if exposure != 0.0:
        image_np = image_np * (2.0 ** exposure)

    # Simple tone mapping: clamp and gamma correct
    image_np = np.clip(image_np, 0.0, 1.0)
    image_np = np.power(image_np, 1.0 / gamma)

    # Convert to 8-bit
    image_8bit = (image_np * 255).astype(np.uint8)

    # Convert RGB to BGR for OpenCV
    image_bgr = cv2.cvtColor(image_8bit, cv2.COLOR_RGB2BGR)

    if not cv2.imwrite(str(png_path), image_bgr):
        raise ValueError(f"Could not write PNG file: {png_path}")
