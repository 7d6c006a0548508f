"""
Preprocessing Transforms

추론용 이미지 전처리(resize, tensor 변환, 정규화)를 정의합니다.
"""

from typing import Any, Dict, List, Optional, Tuple

import torchvision.transforms as transforms


IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]


def get_input_size(config: Optional[Dict[str, Any]] = None) -> Tuple[int, int]:
    """
    설정에서 입력 크기를 읽습니다.

    Returns:
        (height, width)
    """
    preprocess_config = (config or {}).get('preprocessing', {})
    input_size = preprocess_config.get('input_size', {})
    return input_size.get('height', 224), input_size.get('width', 224)


def get_normalization(config: Optional[Dict[str, Any]] = None) -> Tuple[List[float], List[float]]:
    """
    설정에서 정규화 mean / std를 읽습니다.

    Returns:
        (mean, std)
    """
    preprocess_config = (config or {}).get('preprocessing', {})
    norm_config = preprocess_config.get('normalization', {})
    norm_type = norm_config.get('type', 'imagenet')

    if norm_type == 'imagenet':
        mean = norm_config.get('mean', IMAGENET_MEAN)
        std = norm_config.get('std', IMAGENET_STD)
    elif norm_type == 'custom':
        mean = norm_config.get('mean', [0.5, 0.5, 0.5])
        std = norm_config.get('std', [0.5, 0.5, 0.5])
    else:
        mean = [0.0, 0.0, 0.0]
        std = [1.0, 1.0, 1.0]

    return mean, std


def get_val_transforms(config: Optional[Dict[str, Any]] = None) -> transforms.Compose:
    """
    추론용 전처리 파이프라인을 생성합니다.

    Args:
        config: 설정 딕셔너리 (None이면 224x224, ImageNet 정규화)

    Returns:
        PIL Image -> 정규화된 tensor [C, H, W] transform
    """
    height, width = get_input_size(config)
    mean, std = get_normalization(config)

    # 추론 시에는 augmentation 없이 정규화만 수행
    transform_list = [
        transforms.Resize((height, width)),
        transforms.ToTensor(),
        transforms.Normalize(mean=mean, std=std)
    ]

    return transforms.Compose(transform_list)
