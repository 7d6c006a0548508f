"""
Age & Gender Network

Backbone(feature extractor) + classifier head(age / gender linear layer)를 결합한
전체 네트워크입니다. Classifier 파라미터는 flat weight buffer 또는 named weight map
으로부터 로드되며, 로드된 이후에는 변경되지 않습니다.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from .age_head import age_output, decode_age
from .backbone import FeatureExtractor, TimmFeatureExtractor
from .errors import AlreadyDisposedError, MissingParameterError, NotLoadedError
from .extract_params import (
    FlatWeights,
    as_flat_weights,
    extract_classifier_params,
    split_flat_weights
)
from .extract_params_from_weight_map import extract_params_from_weight_map, separate_weight_maps
from .gender_head import MALE_CLASS_INDEX, decode_gender, gender_logits, gender_probabilities
from .params import FEATURE_DIM, ClassifierParams, ParamMapping
from .utils import resolve_device
from ..preprocess.net_input import NetInput, TNetInput, to_net_input


logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = 'age_gender_model'

# Bottleneck feature map에 적용하는 average pooling
POOL_KERNEL_SIZE = (7, 7)
POOL_STRIDE = (2, 2)


class ModelState(Enum):
    UNLOADED = 'unloaded'
    LOADED = 'loaded'
    DISPOSED = 'disposed'


@dataclass(frozen=True)
class LoadedClassifier:
    params: ClassifierParams
    param_mappings: ParamMapping


def requires_loaded(method):
    """Classifier 파라미터가 로드된 상태에서만 method 실행을 허용합니다."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self.state is not ModelState.LOADED:
            raise NotLoadedError(self.name)
        return method(self, *args, **kwargs)

    return wrapper


class AgeGenderNet(nn.Module):
    """
    Age & Gender Estimation Network

    처리 과정:
    1. (이미지 입력인 경우) backbone으로 bottleneck feature map [N, 7, 7, 512] 추출
    2. 7x7 average pooling (stride 2, valid) 후 [N, 512]로 flatten
    3. Age layer: [N, 512] @ [512, 1] + [1] -> [N]
    4. Gender layer: [N, 512] @ [512, 2] + [2] -> [N, 2] (logits)
    5. Gender softmax 및 라벨 디코딩
    """

    def __init__(
        self,
        feature_extractor: Optional[FeatureExtractor] = None,
        throw_on_redispose: bool = False,
        device: Union[str, torch.device] = 'cpu',
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            feature_extractor: Backbone (None이면 timm resnet18)
            throw_on_redispose: dispose 중복 호출 시 예외 발생 여부 (기본값)
            device: Classifier 연산 디바이스
            config: 입력 전처리 설정 딕셔너리
        """
        super(AgeGenderNet, self).__init__()

        self._name = 'AgeGenderNet'
        self.feature_extractor = (
            feature_extractor if feature_extractor is not None else TimmFeatureExtractor()
        )
        self.throw_on_redispose = throw_on_redispose
        self.device = torch.device(device)
        self.config = config

        self._classifier: Optional[LoadedClassifier] = None
        self._disposed = False

        self.feature_extractor.to(self.device)
        self.eval()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ModelState:
        if self._classifier is not None:
            return ModelState.LOADED
        if self._disposed:
            return ModelState.DISPOSED
        return ModelState.UNLOADED

    @property
    def is_loaded(self) -> bool:
        return self.state is ModelState.LOADED

    @property
    def params(self) -> ClassifierParams:
        if self._classifier is None:
            raise NotLoadedError(self.name)
        return self._classifier.params

    @property
    def param_mappings(self) -> ParamMapping:
        """Backbone entry 다음 classifier entry 순서의 전체 ledger"""
        mappings = self.feature_extractor.param_mappings
        if self._classifier is not None:
            mappings = mappings + self._classifier.param_mappings
        return mappings

    @property
    def classifier_param_mappings(self) -> ParamMapping:
        if self._classifier is None:
            return ParamMapping()
        return self._classifier.param_mappings

    def get_default_model_name(self) -> str:
        return DEFAULT_MODEL_NAME

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_from_buffer(self, weights: FlatWeights) -> ParamMapping:
        """
        Backbone + classifier 전체 flat buffer를 로드합니다.

        마지막 1539개 값이 classifier, 나머지 prefix가 backbone 파라미터입니다.

        Args:
            weights: float32 flat buffer

        Returns:
            전체 ParamMapping
        """
        weights = as_flat_weights(weights)
        feature_extractor_weights, classifier_weights, offset = split_flat_weights(weights)

        params, param_mappings = extract_classifier_params(classifier_weights, base_offset=offset)
        self.feature_extractor.extract_weights(feature_extractor_weights)
        self._set_classifier(params, param_mappings)

        logger.info(f"{self.name} - loaded {len(weights)} weights from flat buffer")
        return self.param_mappings

    def load_from_weight_map(self, weight_map: Mapping[str, Any]) -> ParamMapping:
        """
        Named weight map을 로드합니다. 'fc/'로 시작하는 key는 classifier,
        나머지는 backbone으로 전달됩니다.

        Args:
            weight_map: 경로 -> tensor 딕셔너리

        Returns:
            전체 ParamMapping
        """
        feature_extractor_map, classifier_map = separate_weight_maps(weight_map)

        params, param_mappings = extract_params_from_weight_map(classifier_map)
        self.feature_extractor.load_from_weight_map(feature_extractor_map)
        self._set_classifier(params, param_mappings)

        logger.info(f"{self.name} - loaded {len(weight_map)} entries from weight map")
        return self.param_mappings

    def extract_classifier_params(self, weights: FlatWeights) -> Tuple[ClassifierParams, ParamMapping]:
        return extract_classifier_params(weights)

    def load_classifier_params(self, weights: FlatWeights) -> ParamMapping:
        """Classifier 부분(1539개)만 로드합니다. Backbone은 그대로 유지됩니다."""
        params, param_mappings = self.extract_classifier_params(weights)
        self._set_classifier(params, param_mappings)
        return param_mappings

    def _set_classifier(self, params: ClassifierParams, param_mappings: ParamMapping):
        # 기존 상태를 수정하지 않고 한 번에 교체
        self._classifier = LoadedClassifier(params.to(self.device), param_mappings)
        self._disposed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_param_list(self) -> List[Tuple[str, torch.Tensor]]:
        param_list = self.feature_extractor.get_param_list()
        if self._classifier is not None:
            param_list = param_list + self._classifier.params.param_list()
        return param_list

    def get_param_from_path(self, path: str) -> torch.Tensor:
        for param_path, tensor in self.get_param_list():
            if param_path == path:
                return tensor
        raise MissingParameterError(path)

    @requires_loaded
    def serialize_params(self) -> np.ndarray:
        """
        전체 파라미터를 flat float32 buffer로 직렬화합니다 (load_from_buffer의 역연산).
        """
        classifier = [
            tensor.detach().cpu().reshape(-1).numpy()
            for _, tensor in self._classifier.params.param_list()
        ]
        return np.concatenate([self.feature_extractor.serialize_params()] + classifier).astype(np.float32)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _bottleneck_features(self, inputs: Union[NetInput, torch.Tensor, TNetInput]) -> torch.Tensor:
        # Tensor는 이미 추출된 bottleneck feature map으로 간주
        if isinstance(inputs, torch.Tensor):
            return inputs
        net_input = to_net_input(inputs, config=self.config)
        return self.feature_extractor.forward_input(net_input)

    @requires_loaded
    def infer_raw(self, inputs: Union[NetInput, torch.Tensor, TNetInput]) -> Dict[str, torch.Tensor]:
        """
        Raw 출력을 계산합니다.

        Args:
            inputs: NetInput(이미지 batch), bottleneck feature tensor [N, 7, 7, 512],
                또는 to_net_input이 받는 이미지 입력

        Returns:
            Dictionary containing:
                - 'age': Age [N]
                - 'gender': Gender logits [N, 2]
        """
        params = self._classifier.params

        with torch.no_grad():
            bottleneck = self._bottleneck_features(inputs)
            bottleneck = bottleneck.to(device=self.device, dtype=torch.float32)

            if bottleneck.dim() != 4:
                raise ValueError(
                    f"Expected bottleneck features [N, 7, 7, {FEATURE_DIM}], "
                    f"got shape {tuple(bottleneck.shape)}"
                )
            if bottleneck.shape[1] < POOL_KERNEL_SIZE[0] or bottleneck.shape[2] < POOL_KERNEL_SIZE[1]:
                raise ValueError(
                    f"Bottleneck spatial size {tuple(bottleneck.shape[1:3])} is smaller "
                    f"than pooling window {POOL_KERNEL_SIZE}"
                )

            # NHWC -> NCHW
            pooled = F.avg_pool2d(
                bottleneck.permute(0, 3, 1, 2),
                kernel_size=POOL_KERNEL_SIZE,
                stride=POOL_STRIDE,
                padding=0
            )
            pooled = pooled.flatten(1)

            if pooled.shape[1] != FEATURE_DIM:
                raise ValueError(
                    f"Pooled feature width {pooled.shape[1]} does not match {FEATURE_DIM}"
                )

            age = age_output(pooled, params.age)
            gender = gender_logits(pooled, params.gender)

        return {'age': age, 'gender': gender}

    @requires_loaded
    def infer_normalized(self, inputs: Union[NetInput, torch.Tensor, TNetInput]) -> Dict[str, torch.Tensor]:
        """
        Gender 출력에 softmax를 적용한 결과를 반환합니다.

        Returns:
            Dictionary containing:
                - 'age': Age [N]
                - 'gender': Gender probabilities [N, 2]
        """
        output = self.infer_raw(inputs)
        with torch.no_grad():
            gender = gender_probabilities(output['gender'])
        return {'age': output['age'], 'gender': gender}

    @requires_loaded
    def forward(self, inputs: TNetInput) -> Dict[str, torch.Tensor]:
        """이미지 입력을 정규화한 후 infer_normalized를 수행합니다."""
        return self.infer_normalized(to_net_input(inputs, config=self.config))

    @requires_loaded
    def predict_age_and_gender(self, inputs: TNetInput) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """
        나이와 성별을 예측합니다.

        Args:
            inputs: 단일 이미지 또는 이미지 리스트

        Returns:
            {'age': float, 'gender': 'male' | 'female', 'gender_probability': float}
            (batch 입력이면 샘플별 딕셔너리 리스트)
        """
        net_input = to_net_input(inputs, config=self.config)
        output = self.infer_normalized(net_input)

        results = []
        for index in range(net_input.batch_size):
            prob_male = float(output['gender'][index, MALE_CLASS_INDEX].item())
            gender, gender_probability = decode_gender(prob_male)
            results.append({
                'age': decode_age(output['age'], index),
                'gender': gender,
                'gender_probability': gender_probability
            })

        return results if net_input.is_batch_input else results[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispose(self, strict: Optional[bool] = None):
        """
        Backbone을 먼저 해제한 뒤 classifier 파라미터를 해제합니다.

        Args:
            strict: 중복 해제 시 예외 발생 여부 (None이면 throw_on_redispose 사용)
        """
        strict = self.throw_on_redispose if strict is None else strict

        if self._disposed:
            if strict:
                raise AlreadyDisposedError(self.name)
            return

        # Classifier만 재로드된 경우 backbone은 이미 해제된 상태
        if not self.feature_extractor.is_disposed:
            self.feature_extractor.dispose(strict)
        self._classifier = None
        self._disposed = True

        logger.debug(f"{self.name} - disposed")


def build_network(
    config: Dict[str, Any],
    feature_extractor: Optional[FeatureExtractor] = None
) -> AgeGenderNet:
    """
    설정 딕셔너리로부터 네트워크를 생성하는 편의 함수

    Args:
        config: 설정 딕셔너리 (YAML 파일에서 로드)
        feature_extractor: (optional) 직접 생성한 backbone

    Returns:
        AgeGenderNet 인스턴스
    """
    model_config = config.get('model', {})
    backbone_config = model_config.get('backbone', {})

    if feature_extractor is None:
        feature_extractor = TimmFeatureExtractor(
            backbone_name=backbone_config.get('name', 'resnet18'),
            pretrained=backbone_config.get('pretrained', False)
        )

    return AgeGenderNet(
        feature_extractor=feature_extractor,
        throw_on_redispose=model_config.get('throw_on_redispose', False),
        device=resolve_device(config),
        config=config
    )
