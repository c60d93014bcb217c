from .helpers import (
    serialize_mongo_doc,
    success_response,
    error_response,
    parse_object_id,
    to_decimal,
)
from .logger import Logger

__all__ = [
    "serialize_mongo_doc",
    "success_response",
    "error_response",
    "parse_object_id",
    "to_decimal",
    "Logger",
]
