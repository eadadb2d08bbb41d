"""Core export functionality."""

from .auth import FeishuAuth, FeishuAuthError
from .client import FeishuAPIError, FeishuClient
from .fields import FieldDescriptor, FieldType, SelectOption, build_catalog
from .normalizer import FieldValueNormalizer, normalize

__all__ = [
    "FeishuAPIError",
    "FeishuAuth",
    "FeishuAuthError",
    "FeishuClient",
    "FieldDescriptor",
    "FieldType",
    "FieldValueNormalizer",
    "SelectOption",
    "build_catalog",
    "normalize",
]
