"""
Error Types

가중치 추출, 추론, 모델 수명 주기에서 발생하는 예외를 정의합니다.
"""

from typing import Optional


class AgeGenderNetError(Exception):
    """모든 age_gender_net 예외의 기본 클래스"""


class NotLoadedError(AgeGenderNetError):
    """가중치를 로드하기 전에 추론을 호출한 경우"""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"{model_name} - load model before inference")


class MalformedWeightsError(AgeGenderNetError):
    """Flat weight buffer 길이 또는 tensor shape가 계약과 맞지 않는 경우"""

    def __init__(
        self,
        message: str,
        expected: Optional[object] = None,
        actual: Optional[object] = None
    ):
        self.expected = expected
        self.actual = actual
        if expected is not None or actual is not None:
            message = f"{message} (expected: {expected}, actual: {actual})"
        super().__init__(message)


class MissingParameterError(AgeGenderNetError, KeyError):
    """Weight map에서 필수 파라미터를 찾지 못한 경우"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"no parameter found in weight map for key: {self.key}"


class BackboneError(AgeGenderNetError):
    """Feature extractor(backbone)에서 발생한 오류"""


class AlreadyDisposedError(AgeGenderNetError):
    """strict 모드에서 이미 해제된 파라미터를 다시 해제하려는 경우"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"param tensor has already been disposed for path {path}")
