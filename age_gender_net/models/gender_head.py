"""
Gender Classification Head

Pooling된 backbone feature를 입력으로 받아 성별(2-class)을 분류합니다.
"""

from typing import Tuple

import torch

from .age_head import fully_connected_layer
from .params import LinearLayerParams


# Softmax 출력에서 male 클래스 인덱스
MALE_CLASS_INDEX = 1
GENDER_THRESHOLD = 0.5


def gender_logits(pooled: torch.Tensor, params: LinearLayerParams) -> torch.Tensor:
    """
    Gender layer 출력 (activation 없음)

    Args:
        pooled: Pooling된 feature [N, 512]
        params: Gender layer 파라미터

    Returns:
        Gender logits [N, 2]
    """
    return fully_connected_layer(pooled, params)


def gender_probabilities(logits: torch.Tensor) -> torch.Tensor:
    """마지막 차원에 softmax를 적용합니다."""
    return torch.softmax(logits, dim=-1)


def decode_gender(prob_male: float) -> Tuple[str, float]:
    """
    Male 확률을 성별 라벨과 확률로 변환합니다.

    0.5를 초과해야 male로 판단하며, 정확히 0.5이면 female(0.5)이 됩니다.

    Args:
        prob_male: male 클래스 확률

    Returns:
        (gender, gender_probability)
    """
    if prob_male > GENDER_THRESHOLD:
        return 'male', prob_male
    return 'female', 1 - prob_male


def class_to_gender(class_idx: int) -> str:
    """
    클래스 인덱스를 성별 문자열로 변환합니다.

    Args:
        class_idx: 클래스 인덱스 (MALE_CLASS_INDEX이면 male)

    Returns:
        "male" 또는 "female"
    """
    if class_idx not in (0, 1):
        raise ValueError(f"Unknown gender class: {class_idx}")
    return 'male' if class_idx == MALE_CLASS_INDEX else 'female'
