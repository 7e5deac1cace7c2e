"""
Pydantic models for gateway frames and their payloads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for payload models using camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Envelopes


class RequestFrame(BaseModel):
    type: Literal["req"] = "req"
    id: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class EventFrame(BaseModel):
    type: Literal["event"] = "event"
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _null_payload(cls, value: Any) -> Any:
        return {} if value is None else value


class ErrorShape(BaseModel):
    code: str | None = None
    message: str | None = None


class ResponseFrame(BaseModel):
    type: Literal["res"] = "res"
    id: str
    ok: bool
    payload: dict[str, Any] | None = None
    error: ErrorShape | None = None

    def error_message(self) -> str:
        """Best-effort human readable error carried by a failed response."""
        if self.error and self.error.message:
            return self.error.message
        if self.payload:
            for key in ("message", "error"):
                value = self.payload.get(key)
                if isinstance(value, str) and value:
                    return value
        return "request failed"

    def error_code(self) -> str | None:
        return self.error.code if self.error else None


Frame = Annotated[
    Union[RequestFrame, EventFrame, ResponseFrame], Field(discriminator="type")
]


# Handshake


class ChallengePayload(BaseModel):
    nonce: str
    ts: int


class ClientDescriptor(WireModel):
    id: str
    display_name: str
    version: str
    platform: str
    mode: str


class DeviceAttestation(WireModel):
    id: str
    public_key: str
    signature: str
    signed_at: int
    nonce: str


class AuthBlock(WireModel):
    token: str


class ConnectParams(WireModel):
    min_protocol: int
    max_protocol: int
    client: ClientDescriptor
    role: str
    scopes: list[str]
    caps: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    permissions: dict[str, Any] = Field(default_factory=dict)
    locale: str
    user_agent: str
    device: DeviceAttestation
    auth: AuthBlock | None = None


# Chat and subscriptions


class ChatSendParams(WireModel):
    session_key: str
    message: str
    idempotency_key: str


class SubscribeParams(WireModel):
    session_keys: list[str]
    events: list[str]


class ChatSendResult(WireModel):
    run_id: str | None = None


class ContentBlock(BaseModel):
    type: str = "text"
    text: str | None = None


class ChatMessage(BaseModel):
    role: str
    content: list[ContentBlock] | str | None = None

    def text(self) -> str:
        """Concatenate the text blocks of this message."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.text for block in self.content
            if block.type == "text" and block.text
        )


class ChatEventPayload(WireModel):
    session_key: str
    state: str | None = None
    run_id: str | None = None
    message: ChatMessage | None = None
    error_message: str | None = None


class AgentData(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str | None = None
    phase: str | None = None


class AgentEventPayload(WireModel):
    session_key: str
    stream: str | None = None
    run_id: str | None = None
    data: AgentData = Field(default_factory=AgentData)


# Client configuration


class ClientConfig(BaseModel):
    gateway_url: str | None = None
    gateway_token: str | None = None
    companion_name: str | None = None
    identity_dir: Path | None = None
    identity_key_path: Path | None = None
    probe_timeout: float | None = None
    handshake_timeout: float | None = None
    request_id_policy: Literal["fixed", "monotonic"] | None = None
    alert_session_keys: list[str] | None = None
    alert_ignored_replies: list[str] | None = None
    alert_init_message: str | None = None
    log_level: int | None = None
