"""
Preprocessing package for age and gender estimation system.

This package converts caller-supplied images into normalized input batches.
"""

from .transforms import (
    get_input_size,
    get_normalization,
    get_val_transforms
)
from .net_input import NetInput, to_net_input

__all__ = [
    'get_input_size',
    'get_normalization',
    'get_val_transforms',
    'NetInput',
    'to_net_input'
]
