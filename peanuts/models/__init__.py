from .base import Base
from .photo import Photo
from .source import Source
from .secret_key import SecretKey
from .error_code import ErrorCode

__all__ = [
    "Base",
    "Photo",
    "Source",
    "SecretKey",
    "ErrorCode",
]
