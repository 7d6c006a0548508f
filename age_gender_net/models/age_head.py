"""
Age Regression Head

Pooling된 backbone feature [N, 512]를 입력으로 받아 나이(scalar)를 추정합니다.
"""

import torch

from .params import LinearLayerParams


def fully_connected_layer(x: torch.Tensor, params: LinearLayerParams) -> torch.Tensor:
    """
    x @ weights + bias

    Args:
        x: 입력 feature [N, D_in]
        params: weights [D_in, D_out], bias [D_out]

    Returns:
        출력 [N, D_out]
    """
    return torch.matmul(x, params.weights) + params.bias


def age_output(pooled: torch.Tensor, params: LinearLayerParams) -> torch.Tensor:
    """
    Age layer를 적용하고 [N, 1] 출력을 [N]으로 squeeze 합니다.

    Args:
        pooled: Pooling된 feature [N, 512]
        params: Age layer 파라미터

    Returns:
        Age [N]
    """
    return fully_connected_layer(pooled, params).reshape(-1)


def decode_age(age: torch.Tensor, index: int = 0) -> float:
    """Batch 출력에서 index번째 샘플의 나이를 float로 반환합니다."""
    return float(age[index].item())
