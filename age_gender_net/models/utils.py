"""
Model Utility Functions

모델 관련 유틸리티 함수들 (설정 로드, 디바이스 선택, 가중치 파일 저장/로드 등)
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import torch
import yaml


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / 'configs' / 'config.yaml'

FLAT_WEIGHT_SUFFIXES = ('.bin', '.weights')
WEIGHT_MAP_SUFFIXES = ('.pt', '.pth', '.npz')


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    YAML 설정 파일을 로드합니다.

    Args:
        config_path: 설정 파일 경로 (None이면 패키지 기본 설정)

    Returns:
        설정 딕셔너리
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    return config or {}


def resolve_device(config: Dict[str, Any]) -> torch.device:
    """
    설정에 따라 디바이스를 선택합니다. 사용할 수 없으면 CPU를 반환합니다.
    """
    device_config = config.get('device', {})
    device_type = device_config.get('type', 'cpu')

    if device_type == 'cuda' and torch.cuda.is_available():
        return torch.device(f"cuda:{device_config.get('device_id', 0)}")
    elif device_type == 'mps' and torch.backends.mps.is_available():
        return torch.device('mps')
    return torch.device('cpu')


def load_weights_file(model, weights_path: Union[str, Path], device: str = "cpu"):
    """
    가중치 파일을 모델에 로드합니다.

    - .bin / .weights: little-endian float32 flat buffer -> load_from_buffer
    - .pt / .pth: named tensor map ('model_state_dict' key 지원) -> load_from_weight_map
    - .npz: named numpy array map -> load_from_weight_map

    Args:
        model: AgeGenderNet 인스턴스
        weights_path: 가중치 파일 경로
        device: torch.load map_location

    Returns:
        로드된 전체 ParamMapping
    """
    weights_path = Path(weights_path)

    if not weights_path.exists():
        raise FileNotFoundError(f"Weights not found: {weights_path}")

    suffix = weights_path.suffix.lower()

    if suffix in FLAT_WEIGHT_SUFFIXES:
        weights = np.fromfile(weights_path, dtype='<f4')
        param_mappings = model.load_from_buffer(weights)
    elif suffix in ('.pt', '.pth'):
        checkpoint = torch.load(weights_path, map_location=device, weights_only=True)
        if 'model_state_dict' in checkpoint:
            checkpoint = checkpoint['model_state_dict']
        param_mappings = model.load_from_weight_map(checkpoint)
    elif suffix == '.npz':
        with np.load(weights_path) as archive:
            weight_map = {key: archive[key] for key in archive.files}
        param_mappings = model.load_from_weight_map(weight_map)
    else:
        raise ValueError(
            f"Unsupported weights format: {suffix} "
            f"(expected one of {FLAT_WEIGHT_SUFFIXES + WEIGHT_MAP_SUFFIXES})"
        )

    logger.info(f"Loaded weights from {weights_path} ({len(param_mappings)} tensors)")
    return param_mappings


def save_weights_file(model, weights_path: Union[str, Path]) -> str:
    """
    모델 파라미터를 flat float32 buffer 파일로 저장합니다.

    Args:
        model: 로드된 AgeGenderNet 인스턴스
        weights_path: 저장 경로

    Returns:
        저장된 파일 경로
    """
    weights_path = Path(weights_path)
    weights_path.parent.mkdir(parents=True, exist_ok=True)

    model.serialize_params().astype('<f4').tofile(weights_path)

    logger.info(f"Saved weights to {weights_path}")
    return str(weights_path)


def count_parameters(model) -> Dict[str, int]:
    """
    모델의 파라미터 개수를 계산합니다.

    Returns:
        {'total': 총 파라미터 수, 'backbone': backbone 파라미터 수, 'classifier': classifier 파라미터 수}
    """
    backbone = sum(tensor.numel() for _, tensor in model.feature_extractor.get_param_list())
    classifier = model.classifier_param_mappings.num_parameters

    return {
        'total': backbone + classifier,
        'backbone': backbone,
        'classifier': classifier
    }


def get_model_size_mb(model) -> float:
    """
    모델 파라미터 크기를 MB 단위로 계산합니다.
    """
    size = sum(tensor.nelement() * tensor.element_size() for _, tensor in model.get_param_list())
    return size / 1024**2
