"""
Network Input

다양한 형태의 이미지 입력(파일 경로, PIL Image, numpy 배열, tensor, 그 리스트)을
하나의 정규화된 입력 batch [N, 3, H, W]로 변환합니다.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

import numpy as np
import torch
import torchvision.transforms.functional as F
from PIL import Image

from .transforms import get_input_size, get_val_transforms


ImageLike = Union[str, Path, Image.Image, np.ndarray, torch.Tensor]
TNetInput = Union['NetInput', ImageLike, Sequence[ImageLike]]


@dataclass(frozen=True)
class NetInput:
    """
    정규화된 입력 batch

    Attributes:
        batch: 이미지 tensor [N, 3, H, W]
        is_batch_input: 리스트/4D 입력처럼 batch로 전달되었는지 여부
    """
    batch: torch.Tensor
    is_batch_input: bool = False

    @property
    def batch_size(self) -> int:
        return self.batch.shape[0]


def _image_to_tensor(
    image: ImageLike,
    transform: Callable[[Image.Image], torch.Tensor],
    input_size
) -> torch.Tensor:
    if isinstance(image, (str, Path)):
        path = Path(image)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        with Image.open(path) as img:
            return transform(img.convert('RGB'))

    if isinstance(image, Image.Image):
        return transform(image.convert('RGB'))

    if isinstance(image, np.ndarray):
        if image.ndim not in (2, 3):
            raise ValueError(f"Expected HxW or HxWxC image array, got shape {image.shape}")
        return transform(Image.fromarray(image.astype(np.uint8)).convert('RGB'))

    if isinstance(image, torch.Tensor):
        # Tensor 입력은 이미 정규화된 [C, H, W]로 간주하고 크기만 맞춤
        if image.dim() != 3:
            raise ValueError(f"Expected [C, H, W] image tensor, got shape {tuple(image.shape)}")
        return F.resize(image.to(torch.float32), list(input_size), antialias=True)

    raise TypeError(f"Unsupported input type: {type(image).__name__}")


def to_net_input(
    inputs: TNetInput,
    transform: Optional[Callable[[Image.Image], torch.Tensor]] = None,
    config: Optional[Dict[str, Any]] = None
) -> NetInput:
    """
    입력을 NetInput으로 변환합니다.

    Args:
        inputs: 단일 이미지, 이미지 리스트, [N, C, H, W] tensor 또는 NetInput
        transform: PIL Image용 transform (None이면 get_val_transforms(config))
        config: 설정 딕셔너리

    Returns:
        NetInput
    """
    if isinstance(inputs, NetInput):
        return inputs

    transform = transform or get_val_transforms(config)
    input_size = get_input_size(config)

    if isinstance(inputs, torch.Tensor) and inputs.dim() == 4:
        inputs = list(inputs)
    elif isinstance(inputs, np.ndarray) and inputs.ndim == 4:
        inputs = list(inputs)
    elif not isinstance(inputs, (list, tuple)):
        return NetInput(_image_to_tensor(inputs, transform, input_size).unsqueeze(0))

    if len(inputs) == 0:
        raise ValueError("to_net_input - empty array passed as input")

    batch = torch.stack([_image_to_tensor(image, transform, input_size) for image in inputs])
    return NetInput(batch, is_batch_input=True)
