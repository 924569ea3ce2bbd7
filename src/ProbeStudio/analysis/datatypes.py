"""
Common data types for probe fitting.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple
import torch

from .core.image import Image


@dataclass
class SphericalGaussian:
    """
    A spherical gaussian lobe mu * exp(lambda * (dot(p, v) - 1)).
    A collection of K lobes stacks every field along a leading dimension of size K.
    """
    axis: torch.Tensor  # Unit axis p (..., 3)
    sharpness: torch.Tensor  # Lambda (...)
    amplitude: torch.Tensor  # Mu rgb (..., 3)

    @property
    def lobe_count(self) -> int:
        return 1 if self.axis.dim() == 1 else self.axis.shape[0]

    def __getitem__(self, index: int) -> "SphericalGaussian":
        return SphericalGaussian(axis=self.axis[index], sharpness=self.sharpness[index], amplitude=self.amplitude[index])


@dataclass
class SphericalHarmonicsL2:
    """Bands l = 0, 1, 2 of a real spherical harmonic expansion, one column per color."""
    coeffs: torch.Tensor  # (9, 3)

    @classmethod
    def zeros(cls, dtype: torch.dtype = torch.float32, device: torch.device = None) -> "SphericalHarmonicsL2":
        # (l_max + 1)^2 terms for l_max = 2
        return cls(coeffs=torch.zeros((9, 3), dtype=dtype, device=device))


@dataclass
class DirectionSample:
    """A radiance sample consumed by both bases in the same iteration."""
    direction: torch.Tensor  # Unit direction (3)
    radiance: torch.Tensor  # Radiance rgb (3)


@dataclass
class ProbeSettings:
    """Parameters of one fitting and reconstruction run."""
    lobe_count: int = 12
    lobe_sharpness: Optional[float] = None  # defaults to 0.5 * lobe_count
    sample_count: int = 20000  # projection samples
    mc_sample_count: int = 5000  # Monte Carlo irradiance samples per pixel
    width: int = 256
    height: int = 128
    brdf: str = "fitted"  # "fitted" or "cosine"
    brdf_sharpness: float = 6.5  # Chosen through experimentation
    processes: Optional[int] = None

    @property
    def sharpness(self) -> float:
        if self.lobe_sharpness is None:
            return 0.5 * self.lobe_count
        return self.lobe_sharpness

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass
class ProbeImages:
    """Reconstructed images of a run, keyed by their output file stem."""
    radiance: Image
    radiance_sh: Image
    radiance_sg: Image
    irradiance_mc: Image
    irradiance_sh: Image
    irradiance_sg: Image

    def items(self) -> Iterator[Tuple[str, Image]]:
        yield "radiance", self.radiance
        yield "radianceSH", self.radiance_sh
        yield "radianceSG", self.radiance_sg
        yield "irradianceMC", self.irradiance_mc
        yield "irradianceSH", self.irradiance_sh
        yield "irradianceSG", self.irradiance_sg


@dataclass
class ProbeReport:
    """Averages of the red channel of each image, as printed by the command line tool."""
    average_radiance: float
    average_sg_radiance: float
    average_sh_radiance: float
    average_sg_irradiance: float
    average_sh_irradiance: float
    average_mc_irradiance: float
    timing: Dict[str, float] = field(default_factory=dict)  # Seconds per stage

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'average_radiance': self.average_radiance,
            'average_sg_radiance': self.average_sg_radiance,
            'average_sh_radiance': self.average_sh_radiance,
            'average_sg_irradiance': self.average_sg_irradiance,
            'average_sh_irradiance': self.average_sh_irradiance,
            'average_mc_irradiance': self.average_mc_irradiance,
            'timing': self.timing
        }


@dataclass
class ProbeResult:
    """Everything produced by one run."""
    lobes: SphericalGaussian
    sh_coeffs: SphericalHarmonicsL2
    images: ProbeImages
    combined: Image
    report: ProbeReport


ProbeState = Tuple[SphericalGaussian, SphericalHarmonicsL2]
