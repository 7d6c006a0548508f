import numpy as np
import pytest
import torch

from age_gender_net.models.network import AgeGenderNet
from age_gender_net.models.utils import (
    count_parameters,
    get_model_size_mb,
    load_config,
    load_weights_file,
    resolve_device,
    save_weights_file
)

from conftest import TINY_BACKBONE_SIZE, TinyFeatureExtractor


def test_flat_weights_file_roundtrip(loaded_model, flat_weights, tmp_path):
    path = save_weights_file(loaded_model, tmp_path / 'age_gender_model.bin')

    other = AgeGenderNet(feature_extractor=TinyFeatureExtractor())
    mappings = load_weights_file(other, path)

    assert len(mappings) == 6
    np.testing.assert_array_equal(other.serialize_params(), flat_weights)


def test_npz_weight_map(loaded_model, tmp_path):
    path = tmp_path / 'weights.npz'
    np.savez(path, **{key: tensor.numpy() for key, tensor in loaded_model.get_param_list()})

    other = AgeGenderNet(feature_extractor=TinyFeatureExtractor())
    load_weights_file(other, path)

    assert torch.equal(other.params.gender.weights, loaded_model.params.gender.weights)


def test_pt_weight_map_with_state_dict_key(loaded_model, tmp_path):
    path = tmp_path / 'weights.pt'
    torch.save({'model_state_dict': dict(loaded_model.get_param_list())}, path)

    other = AgeGenderNet(feature_extractor=TinyFeatureExtractor())
    load_weights_file(other, path)

    assert torch.equal(other.params.age.bias, loaded_model.params.age.bias)


def test_load_weights_file_errors(model, tmp_path):
    with pytest.raises(FileNotFoundError):
        load_weights_file(model, tmp_path / 'missing.bin')

    unknown = tmp_path / 'weights.h5'
    unknown.write_bytes(b'')
    with pytest.raises(ValueError, match="Unsupported"):
        load_weights_file(model, unknown)


def test_default_config():
    config = load_config()
    assert config['model']['backbone']['name'] == 'resnet18'
    assert resolve_device(config) == torch.device('cpu')


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'config.yaml')


def test_count_parameters(loaded_model):
    counts = count_parameters(loaded_model)
    assert counts == {
        'total': TINY_BACKBONE_SIZE + 1539,
        'backbone': TINY_BACKBONE_SIZE,
        'classifier': 1539
    }
    assert get_model_size_mb(loaded_model) == pytest.approx(counts['total'] * 4 / 1024**2)
