from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import typer


@dataclass(frozen=True)
class ConfirmationRequest:
    tool_name: str
    description: str
    arguments: Mapping[str, Any]
    message: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class ConfirmationResponse:
    confirmed: bool
    allow_without_confirmation: bool = False


class ConfirmationPort(Protocol):
    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationResponse:
        ...


class AutoApproveConfirmationPort:
    """Approves everything. Meant for headless runs and tests."""

    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationResponse:
        return ConfirmationResponse(confirmed=True)


class ConsoleConfirmationPort:
    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationResponse:
        return await asyncio.to_thread(self._prompt, request)

    def _prompt(self, request: ConfirmationRequest) -> ConfirmationResponse:
        title = request.display_name or request.tool_name
        typer.secho(f"\nConfirm tool execution: {title}", bold=True)
        typer.echo(request.description)
        if request.message:
            typer.echo(f"\n{request.message}")
        typer.echo("\nParameters:")
        typer.echo(json.dumps(dict(request.arguments), indent=2, ensure_ascii=False, default=str))

        confirmed = typer.confirm("Allow this action?", default=False)
        if not confirmed:
            return ConfirmationResponse(confirmed=False)
        remember = typer.confirm(
            f"Allow {request.tool_name} without asking again this session?", default=False
        )
        return ConfirmationResponse(confirmed=True, allow_without_confirmation=remember)


@dataclass
class PendingConfirmation:
    request: ConfirmationRequest
    reply: asyncio.Future[ConfirmationResponse] = field(repr=False)

    def resolve(self, confirmed: bool, allow_without_confirmation: bool = False) -> None:
        if not self.reply.done():
            self.reply.set_result(
                ConfirmationResponse(
                    confirmed=confirmed, allow_without_confirmation=allow_without_confirmation
                )
            )


class QueueConfirmationPort:
    """Request/response channel between the engine and a UI.

    Each request is put on ``requests`` as a :class:`PendingConfirmation`; the
    consumer answers through :meth:`PendingConfirmation.resolve`. There is no
    timeout, the session waits until somebody replies.
    """

    def __init__(self) -> None:
        self.requests: asyncio.Queue[PendingConfirmation] = asyncio.Queue()

    async def request_confirmation(self, request: ConfirmationRequest) -> ConfirmationResponse:
        loop = asyncio.get_running_loop()
        pending = PendingConfirmation(request=request, reply=loop.create_future())
        await self.requests.put(pending)
        return await pending.reply
