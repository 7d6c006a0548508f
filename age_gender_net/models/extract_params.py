"""
Flat Weight Buffer Extractor

하나의 연속된 float32 배열을 backbone 부분과 classifier 부분으로 나누고,
classifier 부분을 고정 순서(age weights, age bias, gender weights, gender bias)로
디코딩합니다. Offset은 이름이 아니라 고정 크기로부터 계산됩니다.
"""

import logging
from typing import List, Sequence, Tuple, Union

import numpy as np
import torch

from .errors import MalformedWeightsError
from .params import (
    AGE_OUTPUT_DIM,
    FEATURE_DIM,
    GENDER_OUTPUT_DIM,
    ClassifierParams,
    LinearLayerParams,
    ParamMapping,
    ParamMappingEntry
)


logger = logging.getLogger(__name__)

# 512 * 1 + 1 + 512 * 2 + 2 = 1539 (wire-format 계약, 순서 변경 불가)
CLASSIFIER_WEIGHT_SIZE = (
    (FEATURE_DIM * AGE_OUTPUT_DIM + AGE_OUTPUT_DIM)
    + (FEATURE_DIM * GENDER_OUTPUT_DIM + GENDER_OUTPUT_DIM)
)

FlatWeights = Union[np.ndarray, torch.Tensor, bytes, Sequence[float]]


def as_flat_weights(weights: FlatWeights) -> np.ndarray:
    """
    입력을 1차원 float32 배열로 변환합니다.

    Args:
        weights: numpy 배열, torch tensor, float 시퀀스 또는 little-endian float32 bytes

    Returns:
        연속된 float32 1D 배열
    """
    if isinstance(weights, (bytes, bytearray, memoryview)):
        num_bytes = len(weights)
        if num_bytes % 4 != 0:
            raise MalformedWeightsError(
                "weight buffer byte length must be a multiple of 4",
                expected="multiple of 4", actual=num_bytes
            )
        array = np.frombuffer(weights, dtype='<f4')
    elif isinstance(weights, torch.Tensor):
        array = weights.detach().cpu().numpy()
    else:
        array = np.asarray(weights)

    if array.ndim != 1:
        raise MalformedWeightsError(
            "weight buffer must be one-dimensional",
            expected=1, actual=array.ndim
        )

    return np.ascontiguousarray(array, dtype=np.float32)


def split_flat_weights(weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Flat buffer를 backbone prefix와 classifier suffix로 분리합니다.

    Args:
        weights: 전체 weight buffer

    Returns:
        (feature_extractor_weights, classifier_weights, classifier_offset)
    """
    if len(weights) < CLASSIFIER_WEIGHT_SIZE:
        raise MalformedWeightsError(
            "weight buffer too small to contain the classifier",
            expected=f">= {CLASSIFIER_WEIGHT_SIZE}", actual=len(weights)
        )

    offset = len(weights) - CLASSIFIER_WEIGHT_SIZE
    return weights[:offset], weights[offset:], offset


class WeightExtractor:
    """Flat buffer에서 앞쪽부터 순서대로 값을 잘라내는 cursor"""

    def __init__(self, weights: np.ndarray, base_offset: int = 0):
        self._weights = weights
        self._position = 0
        self._base_offset = base_offset

    def extract(self, num_weights: int) -> Tuple[np.ndarray, int]:
        if num_weights > self.remaining:
            raise MalformedWeightsError(
                "not enough weights left in buffer",
                expected=num_weights, actual=self.remaining
            )

        start = self._position
        self._position += num_weights
        return self._weights[start:self._position], self._base_offset + start

    @property
    def remaining(self) -> int:
        return len(self._weights) - self._position


def extract_fc_params(
    extractor: WeightExtractor,
    channels_in: int,
    channels_out: int,
    mapping_prefix: str,
    param_mappings: List[ParamMappingEntry]
) -> LinearLayerParams:
    """
    Fully connected layer 하나(weights 다음 bias)를 추출합니다.

    Args:
        extractor: weight cursor
        channels_in: 입력 차원
        channels_out: 출력 차원
        mapping_prefix: ledger 경로 prefix (예: 'fc/age')
        param_mappings: 추출된 entry가 추가될 리스트
    """
    weights, weights_offset = extractor.extract(channels_in * channels_out)
    bias, bias_offset = extractor.extract(channels_out)

    param_mappings.append(ParamMappingEntry(
        path=f"{mapping_prefix}/weights",
        shape=(channels_in, channels_out),
        offset=weights_offset
    ))
    param_mappings.append(ParamMappingEntry(
        path=f"{mapping_prefix}/bias",
        shape=(channels_out,),
        offset=bias_offset
    ))

    # 원본 buffer와 메모리를 공유하지 않도록 복사
    return LinearLayerParams(
        weights=torch.from_numpy(weights.copy()).reshape(channels_in, channels_out),
        bias=torch.from_numpy(bias.copy())
    )


def extract_classifier_params(
    weights: FlatWeights,
    base_offset: int = 0
) -> Tuple[ClassifierParams, ParamMapping]:
    """
    정확히 1539개의 float로 이루어진 classifier buffer를 디코딩합니다.

    Args:
        weights: classifier weight buffer
        base_offset: 전체 buffer 내에서 classifier buffer의 시작 위치 (ledger offset용)

    Returns:
        (ClassifierParams, ParamMapping)
    """
    weights = as_flat_weights(weights)

    if len(weights) != CLASSIFIER_WEIGHT_SIZE:
        raise MalformedWeightsError(
            "classifier weight buffer has wrong length",
            expected=CLASSIFIER_WEIGHT_SIZE, actual=len(weights)
        )

    param_mappings: List[ParamMappingEntry] = []
    extractor = WeightExtractor(weights, base_offset=base_offset)

    age = extract_fc_params(extractor, FEATURE_DIM, AGE_OUTPUT_DIM, 'fc/age', param_mappings)
    gender = extract_fc_params(extractor, FEATURE_DIM, GENDER_OUTPUT_DIM, 'fc/gender', param_mappings)

    if extractor.remaining != 0:
        raise MalformedWeightsError(
            "weights remaining after extract",
            expected=0, actual=extractor.remaining
        )

    logger.debug(f"Extracted classifier params at offset {base_offset}")

    return ClassifierParams(age=age, gender=gender), ParamMapping.from_entries(param_mappings)
