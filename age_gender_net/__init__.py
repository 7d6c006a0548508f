"""
Age & gender estimation from face bottleneck features.
"""

from .models import (
    AgeGenderNet,
    ClassifierParams,
    FeatureExtractor,
    ParamMapping,
    TimmFeatureExtractor,
    build_network
)
from .preprocess import NetInput, to_net_input

__version__ = "0.1.0"

__all__ = [
    'AgeGenderNet',
    'ClassifierParams',
    'FeatureExtractor',
    'ParamMapping',
    'TimmFeatureExtractor',
    'build_network',
    'NetInput',
    'to_net_input'
]
