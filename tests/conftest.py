import numpy as np
import pytest
import torch
import torch.nn as nn
import torch.nn.functional as F

from age_gender_net.models.backbone import FeatureExtractor
from age_gender_net.models.extract_params import CLASSIFIER_WEIGHT_SIZE
from age_gender_net.models.network import AgeGenderNet


class TinyFeatureExtractor(FeatureExtractor):
    """1x1 conv + adaptive pooling backbone producing [N, 7, 7, 512]."""

    def __init__(self):
        super().__init__()
        self.conv = nn.Conv2d(3, 512, kernel_size=1)

    def forward(self, x):
        features = F.adaptive_avg_pool2d(self.conv(x), (7, 7))
        return features.permute(0, 2, 3, 1).contiguous()


TINY_BACKBONE_SIZE = 3 * 512 + 512


def classifier_buffer(age_weights, age_bias, gender_weights, gender_bias):
    return np.concatenate([
        np.asarray(age_weights, dtype=np.float32).reshape(-1),
        np.asarray(age_bias, dtype=np.float32).reshape(-1),
        np.asarray(gender_weights, dtype=np.float32).reshape(-1),
        np.asarray(gender_bias, dtype=np.float32).reshape(-1)
    ])


@pytest.fixture
def small_config():
    return {
        'preprocessing': {
            'input_size': {'width': 32, 'height': 32},
            'normalization': {'type': 'imagenet'}
        }
    }


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def feature_extractor():
    torch.manual_seed(0)
    return TinyFeatureExtractor()


@pytest.fixture
def model(feature_extractor, small_config):
    return AgeGenderNet(feature_extractor=feature_extractor, config=small_config)


@pytest.fixture
def flat_weights(rng):
    return rng.standard_normal(TINY_BACKBONE_SIZE + CLASSIFIER_WEIGHT_SIZE).astype(np.float32) * 0.05


@pytest.fixture
def loaded_model(model, flat_weights):
    model.load_from_buffer(flat_weights)
    return model


@pytest.fixture
def bottleneck(rng):
    return torch.from_numpy(rng.standard_normal((3, 7, 7, 512)).astype(np.float32))
