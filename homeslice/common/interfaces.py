"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


class IKeyStore(Protocol):
    """Protocol for device key persistence."""

    def load(self) -> Ed25519PrivateKey | None: ...

    def save(self, private_key: Ed25519PrivateKey) -> None: ...

    def delete(self) -> None: ...

    def describe(self) -> str: ...


class ITransport(Protocol):
    """Protocol for a text-framed duplex socket."""

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def ping(self, timeout: float) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[ITransport]]
