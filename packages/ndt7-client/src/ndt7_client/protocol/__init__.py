"""Pipeline stages of a subtest."""

from .counterflow import counterflow
from .measurer import Measurer
from .reader import decode_frame, read_frames
from .sink import write_results
from .upload import generate_load, write_load

__all__ = [
    "read_frames",
    "decode_frame",
    "Measurer",
    "write_results",
    "counterflow",
    "generate_load",
    "write_load",
]
