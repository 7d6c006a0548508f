import logging

import numpy as np
import pytest
import torch

from age_gender_net.models.errors import MalformedWeightsError, MissingParameterError
from age_gender_net.models.extract_params_from_weight_map import (
    extract_params_from_weight_map,
    separate_weight_maps
)


CLASSIFIER_KEYS = ['fc/age/weights', 'fc/age/bias', 'fc/gender/weights', 'fc/gender/bias']


@pytest.fixture
def classifier_map():
    torch.manual_seed(1)
    return {
        'fc/age/weights': torch.randn(512, 1),
        'fc/age/bias': torch.randn(1),
        'fc/gender/weights': torch.randn(512, 2),
        'fc/gender/bias': torch.randn(2)
    }


def test_separate_weight_maps_regroups_references(classifier_map):
    conv_weight = torch.randn(512, 3, 1, 1)
    weight_map = dict(classifier_map, **{'conv/weight': conv_weight})

    feature_extractor_map, separated = separate_weight_maps(weight_map)

    assert set(feature_extractor_map) == {'conv/weight'}
    assert set(separated) == set(CLASSIFIER_KEYS)
    assert feature_extractor_map['conv/weight'] is conv_weight
    assert separated['fc/age/weights'] is classifier_map['fc/age/weights']


def test_extract_params_from_weight_map(classifier_map):
    params, mappings = extract_params_from_weight_map(classifier_map)

    assert torch.equal(params.age.weights, classifier_map['fc/age/weights'])
    assert torch.equal(params.gender.bias, classifier_map['fc/gender/bias'])
    assert mappings.paths() == CLASSIFIER_KEYS
    assert [entry.shape for entry in mappings] == [(512, 1), (1,), (512, 2), (2,)]
    assert all(entry.offset is None for entry in mappings)
    assert [entry.original_path for entry in mappings] == CLASSIFIER_KEYS


def test_extracted_params_are_independent_of_weight_map(classifier_map):
    expected_weights = classifier_map['fc/age/weights'].clone()
    expected_bias = classifier_map['fc/gender/bias'].clone()
    params, _ = extract_params_from_weight_map(classifier_map)

    classifier_map['fc/age/weights'].mul_(100)
    classifier_map['fc/gender/bias'].fill_(7.0)

    assert torch.equal(params.age.weights, expected_weights)
    assert torch.equal(params.gender.bias, expected_bias)


def test_extracted_params_are_independent_of_numpy_arrays(classifier_map):
    numpy_map = {key: value.numpy().copy() for key, value in classifier_map.items()}
    params, _ = extract_params_from_weight_map(numpy_map)

    numpy_map['fc/gender/weights'][:] = 0.0

    assert torch.equal(params.gender.weights, classifier_map['fc/gender/weights'])


def test_extract_params_from_weight_map_accepts_numpy(classifier_map):
    numpy_map = {key: value.numpy() for key, value in classifier_map.items()}
    params, _ = extract_params_from_weight_map(numpy_map)
    assert params.gender.weights.dtype == torch.float32


@pytest.mark.parametrize("missing_key", CLASSIFIER_KEYS)
def test_missing_key_is_named(classifier_map, missing_key):
    del classifier_map[missing_key]

    with pytest.raises(MissingParameterError) as exc_info:
        extract_params_from_weight_map(classifier_map)

    assert exc_info.value.key == missing_key
    assert missing_key in str(exc_info.value)


def test_wrong_rank_is_rejected(classifier_map):
    classifier_map['fc/gender/bias'] = torch.randn(1, 2)
    with pytest.raises(MalformedWeightsError, match="Tensor1D"):
        extract_params_from_weight_map(classifier_map)


def test_wrong_input_width_is_rejected(classifier_map):
    classifier_map['fc/age/weights'] = torch.randn(256, 1)
    with pytest.raises(MalformedWeightsError):
        extract_params_from_weight_map(classifier_map)


def test_gender_output_width_is_checked(classifier_map):
    classifier_map['fc/gender/weights'] = torch.randn(512, 3)
    classifier_map['fc/gender/bias'] = torch.randn(3)
    with pytest.raises(MalformedWeightsError):
        extract_params_from_weight_map(classifier_map)


def test_unused_classifier_entries_are_logged(classifier_map, caplog):
    classifier_map['fc/extra/weights'] = np.zeros((2, 2), dtype=np.float32)

    with caplog.at_level(logging.WARNING):
        _, mappings = extract_params_from_weight_map(classifier_map)

    assert len(mappings) == 4
    assert 'fc/extra/weights' in caplog.text
