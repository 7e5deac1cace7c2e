# Common utilities
from homeslice.common.codec import decode_frame as decode_frame
from homeslice.common.codec import encode_request as encode_request
from homeslice.common.logging_utils import setup_logger as setup_logger
from homeslice.common.mixins import Configurable as Configurable

__all__ = ["Configurable", "decode_frame", "encode_request", "setup_logger"]
