"""Phase modulator drivers."""
from .slm import SLM, parse_lut, read_lut
from .simulated import SimulatedSLM
