"""
Parameter Data Model

Classifier head의 파라미터 구조와, 추출된 모든 파라미터의 이름/shape/offset을
기록하는 ledger(ParamMapping)를 정의합니다.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import torch

from .errors import MalformedWeightsError


# Backbone 출력 채널 수 (bottleneck feature width)
FEATURE_DIM = 512
AGE_OUTPUT_DIM = 1
GENDER_OUTPUT_DIM = 2


@dataclass(frozen=True)
class ParamMappingEntry:
    """
    추출된 tensor 하나에 대한 기록

    Attributes:
        path: 파라미터 경로 (예: 'fc/age/weights')
        shape: tensor shape
        offset: flat buffer 내 시작 위치 (named map에서 로드한 경우 None)
        original_path: weight map의 원래 key (flat buffer에서 로드한 경우 None)
    """
    path: str
    shape: Tuple[int, ...]
    offset: Optional[int] = None
    original_path: Optional[str] = None

    @property
    def size(self) -> int:
        return math.prod(self.shape)


@dataclass(frozen=True)
class ParamMapping:
    """추출 순서대로 정렬된 ParamMappingEntry 목록 (진단용)"""
    entries: Tuple[ParamMappingEntry, ...] = ()

    def __iter__(self) -> Iterator[ParamMappingEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> ParamMappingEntry:
        return self.entries[index]

    def __add__(self, other: 'ParamMapping') -> 'ParamMapping':
        return ParamMapping(self.entries + tuple(other))

    @classmethod
    def from_entries(cls, entries: List[ParamMappingEntry]) -> 'ParamMapping':
        return cls(tuple(entries))

    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]

    def find(self, path: str) -> Optional[ParamMappingEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    @property
    def num_parameters(self) -> int:
        """기록된 모든 tensor의 scalar 개수 합"""
        return sum(entry.size for entry in self.entries)

    def to_records(self) -> List[Dict[str, Any]]:
        return [
            {
                'path': entry.path,
                'shape': list(entry.shape),
                'offset': entry.offset,
                'original_path': entry.original_path
            }
            for entry in self.entries
        ]


@dataclass(frozen=True)
class LinearLayerParams:
    """
    Fully connected layer 파라미터

    weights는 [D_in, D_out] 레이아웃이며 (x @ weights + bias), D_in은 backbone
    출력 폭(512)으로 고정됩니다.
    """
    weights: torch.Tensor
    bias: torch.Tensor

    def __post_init__(self):
        if self.weights.dim() != 2:
            raise MalformedWeightsError(
                "fully connected weights must be a 2D tensor",
                expected=2, actual=self.weights.dim()
            )
        if self.bias.dim() != 1:
            raise MalformedWeightsError(
                "fully connected bias must be a 1D tensor",
                expected=1, actual=self.bias.dim()
            )
        if self.weights.shape[0] != FEATURE_DIM:
            raise MalformedWeightsError(
                "fully connected weights rows must match the feature dimension",
                expected=FEATURE_DIM, actual=self.weights.shape[0]
            )
        if self.bias.shape[0] != self.weights.shape[1]:
            raise MalformedWeightsError(
                "bias length must match the weights output dimension",
                expected=self.weights.shape[1], actual=self.bias.shape[0]
            )

    @property
    def out_dim(self) -> int:
        return self.weights.shape[1]


@dataclass(frozen=True)
class ClassifierParams:
    """Age / Gender 두 개의 linear layer 파라미터"""
    age: LinearLayerParams
    gender: LinearLayerParams

    def __post_init__(self):
        if self.age.out_dim != AGE_OUTPUT_DIM:
            raise MalformedWeightsError(
                "age layer output dimension mismatch",
                expected=AGE_OUTPUT_DIM, actual=self.age.out_dim
            )
        if self.gender.out_dim != GENDER_OUTPUT_DIM:
            raise MalformedWeightsError(
                "gender layer output dimension mismatch",
                expected=GENDER_OUTPUT_DIM, actual=self.gender.out_dim
            )

    def param_list(self) -> List[Tuple[str, torch.Tensor]]:
        """
        Wire order(age weights, age bias, gender weights, gender bias)로
        (path, tensor) 목록을 반환합니다.
        """
        return [
            ('fc/age/weights', self.age.weights),
            ('fc/age/bias', self.age.bias),
            ('fc/gender/weights', self.gender.weights),
            ('fc/gender/bias', self.gender.bias)
        ]

    def to(self, device: Union[str, torch.device]) -> 'ClassifierParams':
        return ClassifierParams(
            age=LinearLayerParams(self.age.weights.to(device), self.age.bias.to(device)),
            gender=LinearLayerParams(self.gender.weights.to(device), self.gender.bias.to(device))
        )


def shape_of(tensor: torch.Tensor) -> Tuple[int, ...]:
    return tuple(int(dim) for dim in tensor.shape)
