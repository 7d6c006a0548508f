"""
Named Weight Map Extractor

이름 -> tensor 딕셔너리를 naming convention('fc/' prefix)에 따라 backbone 부분과
classifier 부분으로 나누고, classifier tensor를 고정된 key로 조회합니다.
"""

import logging
from typing import Any, Dict, List, Mapping, Tuple

import numpy as np
import torch

from .errors import MalformedWeightsError, MissingParameterError
from .params import ClassifierParams, LinearLayerParams, ParamMapping, ParamMappingEntry, shape_of


logger = logging.getLogger(__name__)

CLASSIFIER_PREFIX = 'fc/'


def separate_weight_maps(
    weight_map: Mapping[str, Any]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Weight map을 feature extractor map과 classifier map으로 분리합니다.
    Tensor는 복사하지 않고 참조만 재배치합니다.

    Args:
        weight_map: 전체 named tensor map

    Returns:
        (feature_extractor_map, classifier_map)
    """
    feature_extractor_map = {}
    classifier_map = {}

    for key, tensor in weight_map.items():
        target = classifier_map if key.startswith(CLASSIFIER_PREFIX) else feature_extractor_map
        target[key] = tensor

    return feature_extractor_map, classifier_map


def to_float_tensor(value: Any) -> torch.Tensor:
    if isinstance(value, np.ndarray):
        value = torch.from_numpy(value)
    return torch.as_tensor(value, dtype=torch.float32)


def extract_weight_entry(
    weight_map: Mapping[str, Any],
    path: str,
    param_rank: int,
    param_mappings: List[ParamMappingEntry]
) -> torch.Tensor:
    if path not in weight_map:
        raise MissingParameterError(path)

    # 호출자의 tensor와 메모리를 공유하지 않도록 복사
    tensor = to_float_tensor(weight_map[path]).clone()
    if tensor.dim() != param_rank:
        raise MalformedWeightsError(
            f"expected weightMap[{path}] to be a Tensor{param_rank}D",
            expected=param_rank, actual=f"Tensor{tensor.dim()}D {shape_of(tensor)}"
        )

    param_mappings.append(ParamMappingEntry(
        path=path,
        shape=shape_of(tensor),
        original_path=path
    ))
    return tensor


def extract_params_from_weight_map(
    classifier_map: Mapping[str, Any]
) -> Tuple[ClassifierParams, ParamMapping]:
    """
    Classifier map에서 age / gender layer 파라미터를 조회합니다.

    Args:
        classifier_map: 'fc/' namespace의 tensor map

    Returns:
        (ClassifierParams, ParamMapping)
    """
    param_mappings: List[ParamMappingEntry] = []

    def extract_fc_params(prefix: str) -> LinearLayerParams:
        weights = extract_weight_entry(classifier_map, f"{prefix}/weights", 2, param_mappings)
        bias = extract_weight_entry(classifier_map, f"{prefix}/bias", 1, param_mappings)
        return LinearLayerParams(weights=weights, bias=bias)

    params = ClassifierParams(
        age=extract_fc_params('fc/age'),
        gender=extract_fc_params('fc/gender')
    )

    mapping = ParamMapping.from_entries(param_mappings)
    unused = sorted(set(classifier_map) - set(mapping.paths()))
    if unused:
        logger.warning(f"Ignoring unused classifier weight entries: {unused}")

    return params, mapping
