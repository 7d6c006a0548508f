import json

import numpy as np
import pandas as pd
import pytest
from PIL import Image

from age_gender_net.inference import (
    collect_image_paths,
    describe_param_mappings,
    inference_features,
    inference_images,
    save_results,
    visualize_result
)


RESULTS = [
    {'source': 'a.jpg', 'age': 31.5, 'gender': 'male', 'gender_probability': 0.8},
    {'source': 'b.jpg', 'age': 22.0, 'gender': 'female', 'gender_probability': 0.6}
]


def test_save_results_json(tmp_path):
    output_file = save_results(RESULTS, str(tmp_path), 'json')
    with open(output_file) as f:
        assert json.load(f) == RESULTS


def test_save_results_csv(tmp_path):
    output_file = save_results(RESULTS, str(tmp_path), 'csv')
    df = pd.read_csv(output_file)
    assert list(df['gender']) == ['male', 'female']


def test_save_results_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        save_results(RESULTS, str(tmp_path), 'xml')


def test_inference_features(loaded_model, bottleneck, tmp_path):
    path = tmp_path / 'features.npy'
    np.save(path, bottleneck.numpy())

    results = inference_features(loaded_model, path)

    assert len(results) == 3
    assert {result['gender'] for result in results} <= {'male', 'female'}
    assert all(0.5 <= result['gender_probability'] <= 1.0 for result in results)


def test_inference_images(loaded_model, tmp_path):
    for name in ('b.png', 'a.jpg'):
        Image.new('RGB', (40, 40), color='blue').save(tmp_path / name)

    image_paths = collect_image_paths(source=str(tmp_path))
    results = inference_images(loaded_model, image_paths)

    assert [path.name for path in image_paths] == ['a.jpg', 'b.png']
    assert [result['source'] for result in results] == [str(path) for path in image_paths]


def test_collect_image_paths_requires_existing_source(tmp_path):
    assert collect_image_paths() == []
    with pytest.raises(ValueError):
        collect_image_paths(source=str(tmp_path / 'missing'))


def test_describe_param_mappings(loaded_model):
    table = describe_param_mappings(loaded_model)
    assert 'fc/gender/bias' in table
    assert 'conv/weight' in table


def test_visualize_result():
    image = visualize_result(Image.new('RGB', (100, 80)), RESULTS[0])
    assert image.size == (100, 80)
