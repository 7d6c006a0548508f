"""
Inference Script for Age & Gender Estimation

단일 이미지, 폴더 내 모든 이미지, 또는 미리 추출된 bottleneck feature(.npy)에 대해
나이와 성별을 추론합니다.

Usage:
    python -m age_gender_net.inference --weights age_gender_model.bin --image face.jpg
"""

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd
import torch
from PIL import Image, ImageDraw, ImageFont
from tqdm import tqdm

from .models.network import AgeGenderNet, build_network
from .models.utils import load_config, load_weights_file
from .models.gender_head import MALE_CLASS_INDEX, decode_gender


IMAGE_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.JPG', '.JPEG', '.PNG']


def setup_logging(log_dir: str, log_level: str = "INFO") -> logging.Logger:
    """로깅 설정"""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"age_gender_inference_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    return logging.getLogger(__name__)


def inference_images(
    model: AgeGenderNet,
    image_paths: List[Path]
) -> List[Dict[str, Any]]:
    """
    이미지마다 나이와 성별을 예측합니다.

    Args:
        model: 가중치가 로드된 모델
        image_paths: 이미지 파일 경로 리스트

    Returns:
        이미지별 결과 딕셔너리 리스트
    """
    results = []
    for image_path in tqdm(image_paths, desc="Inference"):
        prediction = model.predict_age_and_gender(str(image_path))
        results.append({'source': str(image_path), **prediction})
    return results


def inference_features(model: AgeGenderNet, features_path: Path) -> List[Dict[str, Any]]:
    """
    저장된 bottleneck feature [N, 7, 7, 512] (.npy)에 대해 추론합니다.
    """
    features = torch.from_numpy(np.load(features_path)).to(torch.float32)
    if features.dim() == 3:
        features = features.unsqueeze(0)

    output = model.infer_normalized(features)

    results = []
    for index in range(features.shape[0]):
        gender, gender_probability = decode_gender(float(output['gender'][index, MALE_CLASS_INDEX]))
        results.append({
            'source': f"{features_path}[{index}]",
            'age': float(output['age'][index]),
            'gender': gender,
            'gender_probability': gender_probability
        })
    return results


def save_results(
    results: List[Dict[str, Any]],
    output_dir: str,
    output_format: str = 'json'
) -> Path:
    """
    추론 결과를 저장합니다.

    Args:
        results: 결과 리스트
        output_dir: 출력 디렉토리
        output_format: 출력 형식 ('json', 'csv')

    Returns:
        저장된 파일 경로
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if output_format == 'json':
        output_file = output_dir / 'results.json'
        with open(output_file, 'w') as f:
            json.dump(results, f, indent=2)
    elif output_format == 'csv':
        output_file = output_dir / 'results.csv'
        pd.DataFrame(results).to_csv(output_file, index=False)
    else:
        raise ValueError(f"Unsupported output format: {output_format}")

    return output_file


def describe_param_mappings(model: AgeGenderNet) -> str:
    """전체 ledger를 표 형태 문자열로 반환합니다."""
    records = model.param_mappings.to_records()
    if not records:
        return "(no parameters loaded)"
    return pd.DataFrame(records).to_string(index=False)


def visualize_result(image: Image.Image, result: Dict[str, Any]) -> Image.Image:
    """
    이미지에 추론 결과를 시각화합니다.

    Args:
        image: 원본 이미지
        result: 추론 결과

    Returns:
        시각화된 이미지
    """
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()

    draw.text((10, 10), f"Age: {result['age']:.1f}", fill='red', font=font)
    draw.text(
        (10, 40),
        f"Gender: {result['gender']} ({result['gender_probability']:.2f})",
        fill='blue',
        font=font
    )

    return image


def collect_image_paths(image: str = None, source: str = None) -> List[Path]:
    if image:
        return [Path(image)]

    if source:
        source_path = Path(source)
        if source_path.is_file():
            return [source_path]
        if source_path.is_dir():
            image_paths = []
            for ext in IMAGE_EXTENSIONS:
                image_paths.extend(source_path.glob(f'*{ext}'))
            return sorted(set(image_paths))
        raise ValueError(f"Invalid source path: {source_path}")

    return []


def main(argv: List[str] = None):
    parser = argparse.ArgumentParser(description='Age & Gender Estimation Inference')
    parser.add_argument('--config', type=str, default=None,
                       help='Path to config file (default: bundled config)')
    parser.add_argument('--weights', type=str, required=True,
                       help='Path to model weights (.bin flat buffer or .pt/.pth/.npz weight map)')
    parser.add_argument('--image', type=str, default=None,
                       help='Path to single image')
    parser.add_argument('--source', type=str, default=None,
                       help='Path to image directory')
    parser.add_argument('--features', type=str, default=None,
                       help='Path to bottleneck features (.npy, [N, 7, 7, 512])')
    parser.add_argument('--output', type=str, default='results/inference',
                       help='Output directory')
    parser.add_argument('--show-params', action='store_true',
                       help='Print the loaded parameter mapping')
    parser.add_argument('--save-images', action='store_true',
                       help='Save visualized images')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging_config = config.get('logging', {})
    logger = setup_logging(
        logging_config.get('log_dir', 'logs'),
        logging_config.get('level', 'INFO')
    )

    image_paths = collect_image_paths(args.image, args.source)
    if not image_paths and not args.features:
        raise ValueError("One of --image, --source or --features must be provided")

    model = build_network(config)
    logger.info(f"Device: {model.device}")

    load_weights_file(model, args.weights, device=str(model.device))

    if args.show_params:
        print(describe_param_mappings(model))

    results = []
    if args.features:
        results.extend(inference_features(model, Path(args.features)))
    if image_paths:
        logger.info(f"Found {len(image_paths)} image(s)")
        results.extend(inference_images(model, image_paths))

    inference_config = config.get('inference', {})
    save_images = args.save_images or inference_config.get('save_images', False)

    for result in results:
        print(f"{result['source']}: age {result['age']:.1f}, "
              f"{result['gender']} [{result['gender_probability']:.3f}]")

        if save_images and Path(result['source']).is_file():
            image_path = Path(result['source'])
            image = Image.open(image_path).convert('RGB')
            vis_output_path = Path(args.output) / f"{image_path.stem}_result.jpg"
            vis_output_path.parent.mkdir(parents=True, exist_ok=True)
            visualize_result(image, result).save(vis_output_path)

    output_file = save_results(results, args.output, inference_config.get('output_format', 'json'))
    logger.info(f"Results saved to {output_file}")

    model.dispose()


if __name__ == "__main__":
    main()
