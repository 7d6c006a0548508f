"""
Models package for age and gender estimation system.

This package contains the parameter extraction layer (flat buffer and named
weight map), the backbone contract, the classifier heads, and the combined network.
"""

from .errors import (
    AgeGenderNetError,
    AlreadyDisposedError,
    BackboneError,
    MalformedWeightsError,
    MissingParameterError,
    NotLoadedError
)
from .params import (
    ClassifierParams,
    LinearLayerParams,
    ParamMapping,
    ParamMappingEntry
)
from .extract_params import CLASSIFIER_WEIGHT_SIZE, extract_classifier_params, split_flat_weights
from .extract_params_from_weight_map import extract_params_from_weight_map, separate_weight_maps
from .backbone import FeatureExtractor, TimmFeatureExtractor, build_backbone
from .age_head import decode_age, fully_connected_layer
from .gender_head import MALE_CLASS_INDEX, class_to_gender, decode_gender
from .network import AgeGenderNet, ModelState, build_network

__all__ = [
    # Errors
    'AgeGenderNetError',
    'AlreadyDisposedError',
    'BackboneError',
    'MalformedWeightsError',
    'MissingParameterError',
    'NotLoadedError',
    # Params
    'ClassifierParams',
    'LinearLayerParams',
    'ParamMapping',
    'ParamMappingEntry',
    # Extraction
    'CLASSIFIER_WEIGHT_SIZE',
    'extract_classifier_params',
    'split_flat_weights',
    'extract_params_from_weight_map',
    'separate_weight_maps',
    # Backbone
    'FeatureExtractor',
    'TimmFeatureExtractor',
    'build_backbone',
    # Heads
    'decode_age',
    'fully_connected_layer',
    'MALE_CLASS_INDEX',
    'class_to_gender',
    'decode_gender',
    # Network
    'AgeGenderNet',
    'ModelState',
    'build_network'
]
