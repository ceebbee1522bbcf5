"""File-handling and math helpers."""
from .math import INTEGER_TYPES, FLOAT_TYPES, REAL_TYPES, divide_or_one
from .files import generate_path, latest_path, save_h5, load_h5
