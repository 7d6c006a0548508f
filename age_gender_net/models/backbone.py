"""
Backbone Network for Feature Extraction

얼굴 이미지 batch로부터 bottleneck feature map [N, 7, 7, 512]을 추출하는 backbone과,
backbone이 자신의 파라미터를 flat buffer 또는 named weight map으로부터 로드하는
계약(FeatureExtractor)을 정의합니다.
"""

import logging
import math
from typing import Any, List, Mapping, Optional, Tuple

import numpy as np
import timm
import torch
import torch.nn as nn

from .errors import AlreadyDisposedError, BackboneError
from .extract_params import FlatWeights, as_flat_weights
from .extract_params_from_weight_map import to_float_tensor
from .params import FEATURE_DIM, ParamMapping, ParamMappingEntry, shape_of


logger = logging.getLogger(__name__)

ParamSpec = Tuple[str, Tuple[int, ...], torch.dtype]


def build_backbone(
    name: str = "resnet18",
    pretrained: bool = False
) -> nn.Module:
    """
    Backbone 네트워크를 생성합니다.

    Args:
        name: timm 모델 이름 (출력 채널이 512인 모델, 예: "resnet18", "resnet34")
        pretrained: ImageNet 사전 학습 가중치 사용 여부

    Returns:
        Classifier와 global pooling이 제거된 backbone 모듈
    """
    # Spatial feature map이 필요하므로 global pooling 제거
    model = timm.create_model(
        name,
        pretrained=pretrained,
        num_classes=0,
        global_pool=''
    )

    return model


def to_param_path(state_key: str) -> str:
    return state_key.replace('.', '/')


class FeatureExtractor(nn.Module):
    """
    Feature Extractor 기본 클래스

    하위 클래스는 forward(이미지 batch [N, 3, H, W] -> feature map [N, 7, 7, 512])만
    구현하면 됩니다. 파라미터 로드/해제는 모듈의 floating-point state entry를
    state_dict 순서대로 다루는 방식으로 공통 구현됩니다.
    """

    def __init__(self):
        super(FeatureExtractor, self).__init__()
        self._param_specs: Optional[List[ParamSpec]] = None
        self._param_mappings = ParamMapping()
        self._disposed = False

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def param_mappings(self) -> ParamMapping:
        return self._param_mappings

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError

    def forward_input(self, net_input) -> torch.Tensor:
        """
        정규화된 입력 batch를 bottleneck feature map으로 변환합니다.

        Args:
            net_input: NetInput (batch [N, 3, H, W])

        Returns:
            Feature map [N, 7, 7, 512] (NHWC)
        """
        if self._disposed:
            raise BackboneError(f"{self.name} - weights have been disposed, load weights before inference")

        try:
            return self(net_input.batch.to(self._device()))
        except RuntimeError as e:
            raise BackboneError(f"{self.name} - forward failed: {e}") from e

    def extract_weights(self, weights: FlatWeights) -> ParamMapping:
        """
        Flat buffer에서 backbone 파라미터를 state_dict 순서대로 추출합니다.

        Args:
            weights: backbone weight buffer (classifier 부분이 제거된 prefix)

        Returns:
            추출된 파라미터의 ParamMapping
        """
        weights = as_flat_weights(weights)
        specs = self._get_param_specs()

        expected = sum(math.prod(shape) for _, shape, _ in specs)
        if len(weights) != expected:
            raise BackboneError(
                f"{self.name} - weight buffer length mismatch "
                f"(expected: {expected}, actual: {len(weights)})"
            )

        tensors = []
        entries = []
        offset = 0
        for key, shape, dtype in specs:
            size = math.prod(shape)
            chunk = weights[offset:offset + size].copy()
            tensors.append((key, torch.from_numpy(chunk).reshape(shape).to(dtype)))
            entries.append(ParamMappingEntry(path=to_param_path(key), shape=shape, offset=offset))
            offset += size

        self._assign_all(tensors)
        self._param_mappings = ParamMapping.from_entries(entries)

        logger.info(f"{self.name} - extracted {len(entries)} tensors ({expected} weights)")
        return self._param_mappings

    def load_from_weight_map(self, weight_map: Mapping[str, Any]) -> ParamMapping:
        """
        Named weight map에서 backbone 파라미터를 로드합니다.

        Args:
            weight_map: '/' 구분 경로 -> tensor (예: 'backbone/conv1/weight')

        Returns:
            로드된 파라미터의 ParamMapping
        """
        specs = self._get_param_specs()

        missing = [to_param_path(key) for key, _, _ in specs if to_param_path(key) not in weight_map]
        if missing:
            raise BackboneError(f"{self.name} - missing backbone parameters: {missing}")

        # BatchNorm의 num_batches_tracked처럼 정수형 state는 무시
        known = {to_param_path(key) for key in self.state_dict().keys()}
        unexpected = sorted(set(weight_map) - known)
        if unexpected:
            raise BackboneError(f"{self.name} - unexpected backbone parameters: {unexpected}")

        tensors = []
        entries = []
        for key, shape, dtype in specs:
            path = to_param_path(key)
            tensor = to_float_tensor(weight_map[path]).clone()
            if shape_of(tensor) != shape:
                raise BackboneError(
                    f"{self.name} - shape mismatch for {path} "
                    f"(expected: {shape}, actual: {shape_of(tensor)})"
                )
            tensors.append((key, tensor.to(dtype)))
            entries.append(ParamMappingEntry(path=path, shape=shape, original_path=path))

        self._assign_all(tensors)
        self._param_mappings = ParamMapping.from_entries(entries)

        logger.info(f"{self.name} - loaded {len(entries)} tensors from weight map")
        return self._param_mappings

    def get_param_list(self) -> List[Tuple[str, torch.Tensor]]:
        return [
            (to_param_path(key), tensor)
            for key, tensor in self.state_dict().items()
            if tensor.is_floating_point()
        ]

    def serialize_params(self) -> np.ndarray:
        """Backbone 파라미터를 flat float32 배열로 직렬화합니다 (extract_weights의 역연산)"""
        arrays = [
            tensor.detach().cpu().reshape(-1).to(torch.float32).numpy()
            for _, tensor in self.get_param_list()
        ]
        if not arrays:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(arrays)

    def dispose(self, strict: bool = False):
        """
        Backbone 파라미터 메모리를 해제합니다.

        Args:
            strict: 이미 해제된 상태에서 다시 호출하면 예외 발생
        """
        specs = self._get_param_specs()

        if self._disposed:
            if strict:
                path = to_param_path(specs[0][0]) if specs else self.name
                raise AlreadyDisposedError(path)
            return

        device = self._device()
        self._assign_all([
            (key, torch.empty(0, dtype=dtype, device=device))
            for key, _, dtype in specs
        ])
        self._param_mappings = ParamMapping()
        self._disposed = True

        logger.debug(f"{self.name} - disposed {len(specs)} tensors")

    def _get_param_specs(self) -> List[ParamSpec]:
        # 구조는 고정이므로 최초 1회 기록 (dispose 이후 재로드 시 shape 참조용)
        if self._param_specs is None:
            self._param_specs = [
                (key, shape_of(tensor), tensor.dtype)
                for key, tensor in self.state_dict().items()
                if tensor.is_floating_point()
            ]
        return self._param_specs

    def _device(self) -> torch.device:
        tensor = next(iter(self.state_dict().values()), None)
        return tensor.device if tensor is not None else torch.device('cpu')

    def _assign_all(self, tensors: List[Tuple[str, torch.Tensor]]):
        device = self._device()
        for key, tensor in tensors:
            module_path, _, attr = key.rpartition('.')
            module = self.get_submodule(module_path) if module_path else self
            tensor = tensor.to(device)
            if attr in module._parameters:
                module._parameters[attr] = nn.Parameter(tensor, requires_grad=False)
            else:
                module._buffers[attr] = tensor
        self._disposed = False


class TimmFeatureExtractor(FeatureExtractor):
    """
    timm backbone 기반 Feature Extractor

    timm 모델의 forward_features 출력(NCHW)을 NHWC로 변환해 반환합니다.
    """

    def __init__(
        self,
        backbone_name: str = "resnet18",
        pretrained: bool = False
    ):
        """
        Args:
            backbone_name: timm 모델 이름
            pretrained: 사전 학습 가중치 사용 여부
        """
        super(TimmFeatureExtractor, self).__init__()

        self.backbone_name = backbone_name
        self.backbone = build_backbone(name=backbone_name, pretrained=pretrained)

        self.feature_dim = self.backbone.num_features
        if self.feature_dim != FEATURE_DIM:
            raise ValueError(
                f"Backbone {backbone_name} outputs {self.feature_dim} channels, "
                f"expected {FEATURE_DIM}"
            )

        for param in self.backbone.parameters():
            param.requires_grad = False

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass

        Args:
            x: 입력 이미지 [B, 3, H, W]

        Returns:
            Feature map [B, H', W', 512] (224x224 입력 시 7x7)
        """
        features = self.backbone.forward_features(x)
        return features.permute(0, 2, 3, 1).contiguous()

    def get_feature_dim(self) -> int:
        """Feature dimension 반환"""
        return self.feature_dim
