"""Wire codec: JSON text frames to and from envelope models.
"""

from __future__ import annotations

import json
from typing import Any, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from homeslice.common.exceptions import ProtocolError
from homeslice.common.models import (
    EventFrame,
    Frame,
    RequestFrame,
    ResponseFrame,
)

_FRAME_ADAPTER: TypeAdapter[Union[RequestFrame, EventFrame, ResponseFrame]] = (
    TypeAdapter(Frame)
)


def encode_request(
    request_id: str, method: str, params: BaseModel | dict[str, Any]
) -> str:
    """Serialize an outbound request envelope."""
    if isinstance(params, BaseModel):
        params = params.model_dump(by_alias=True, exclude_none=True)
    frame = RequestFrame(id=request_id, method=method, params=params)
    return frame.model_dump_json()


def encode_frame(frame: RequestFrame | EventFrame | ResponseFrame) -> str:
    return frame.model_dump_json(exclude_none=True)


def decode_frame(text: str | bytes) -> RequestFrame | EventFrame | ResponseFrame:
    """Parse one text frame.

    Raises:
        ProtocolError: the frame is not valid JSON or not a known envelope.
    """
    try:
        return _FRAME_ADAPTER.validate_json(text)
    except ValidationError as err:
        msg = f"Malformed frame: {err.error_count()} validation error(s)"
        raise ProtocolError(msg) from err


def parse_payload(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    """Validate an event or response payload against a model."""
    try:
        return model.model_validate(payload)
    except ValidationError as err:
        msg = f"Invalid {model.__name__}: {err.error_count()} validation error(s)"
        raise ProtocolError(msg) from err


def preview(text: str | bytes, limit: int = 120) -> str:
    """Short printable excerpt of a frame for log lines."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    compact = json.dumps(text)[1:-1]
    return compact if len(compact) <= limit else compact[:limit] + "..."
