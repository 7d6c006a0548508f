import numpy as np
import pytest
import torch
from PIL import Image

from age_gender_net.preprocess.net_input import NetInput, to_net_input
from age_gender_net.preprocess.transforms import get_input_size, get_normalization


def test_single_image(small_config):
    net_input = to_net_input(Image.new('RGB', (50, 40)), config=small_config)

    assert tuple(net_input.batch.shape) == (1, 3, 32, 32)
    assert net_input.is_batch_input is False
    assert net_input.batch_size == 1


def test_image_list_is_batch(small_config):
    images = [Image.new('RGB', (50, 40)), Image.new('L', (20, 20))]
    net_input = to_net_input(images, config=small_config)

    assert tuple(net_input.batch.shape) == (2, 3, 32, 32)
    assert net_input.is_batch_input is True


def test_numpy_image(small_config):
    array = np.full((24, 24, 3), 255, dtype=np.uint8)
    net_input = to_net_input(array, config=small_config)
    assert tuple(net_input.batch.shape) == (1, 3, 32, 32)


def test_image_path(tmp_path, small_config):
    path = tmp_path / 'face.png'
    Image.new('RGB', (64, 64), color='red').save(path)

    net_input = to_net_input(str(path), config=small_config)

    assert tuple(net_input.batch.shape) == (1, 3, 32, 32)


def test_missing_image_path(tmp_path, small_config):
    with pytest.raises(FileNotFoundError):
        to_net_input(tmp_path / 'missing.png', config=small_config)


def test_tensor_batch_is_resized(small_config):
    net_input = to_net_input(torch.zeros(4, 3, 16, 16), config=small_config)

    assert tuple(net_input.batch.shape) == (4, 3, 32, 32)
    assert net_input.is_batch_input is True


def test_net_input_passthrough():
    net_input = NetInput(torch.zeros(1, 3, 8, 8))
    assert to_net_input(net_input) is net_input


def test_empty_list_rejected():
    with pytest.raises(ValueError, match="empty"):
        to_net_input([])


def test_unsupported_type_rejected():
    with pytest.raises(TypeError):
        to_net_input(42)


def test_config_defaults():
    assert get_input_size(None) == (224, 224)
    mean, std = get_normalization({'preprocessing': {'normalization': {'type': 'none'}}})
    assert mean == [0.0, 0.0, 0.0] and std == [1.0, 1.0, 1.0]
