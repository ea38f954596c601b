from __future__ import annotations

import asyncio
import json

import typer

from .app import run as app_run
from .config import Settings

app = typer.Typer(help="Voice agent orchestrator")


@app.command()
def serve(
    host: str | None = typer.Option(None, help="Interface to listen on"),
    port: int | None = typer.Option(None, help="Port to listen on"),
    model: str | None = typer.Option(None, help="Reasoning model to use"),
    idle_timeout: float | None = typer.Option(
        None, help="Close connections idle for this many seconds"
    ),
    verbose: bool = typer.Option(False, help="Print effective settings"),
) -> None:
    """Run the WebSocket call server."""
    overrides: dict[str, object] = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if model is not None:
        overrides["model"] = model
    if idle_timeout is not None:
        overrides["idle_timeout_s"] = idle_timeout
    settings = Settings(**overrides)
    if verbose:
        typer.echo(settings.model_dump_json(indent=2, exclude={"openai_api_key", "azure_openai_api_key"}))
    asyncio.run(app_run(settings=settings))


@app.command()
def test(fake_client: bool = typer.Option(False, help="Run a scripted in-memory call")) -> None:
    """Run a short scripted call for testing."""

    if not fake_client:
        typer.echo("No tests specified")
        return

    from .engine.llm_agent import AgentConfig, LlmAgent
    from .reasoning.scripted import EchoReasoner
    from .tools.builtins import builtin_tools
    from .transport.server import CallSession

    frames = [
        {"type": "start", "stream_id": "fake", "metadata": {"source": "cli"}},
        {"type": "text", "text": "hello there"},
        {"type": "dtmf", "dtmf": "5"},
        {"type": "stop"},
    ]

    class _FakeWebSocket:
        def __init__(self, queued: list[dict]):
            self._queue = asyncio.Queue[str]()
            for frame in queued:
                self._queue.put_nowait(json.dumps(frame))
            self.sent: list[dict] = []
            self.close_code: int | None = None
            self.close_reason = ""

        async def recv(self) -> str:
            # Let the agent answer before the next frame arrives.
            await asyncio.sleep(0.05)
            return await self._queue.get()

        async def send(self, msg: str) -> None:
            self.sent.append(json.loads(msg))

        async def close(self, code: int = 1000, reason: str = "") -> None:
            self.close_code = code
            self.close_reason = reason

    def get_agent(context) -> LlmAgent:  # noqa: ANN001 - CallContext
        config = AgentConfig(introduction="Hello from the fake client run.")
        return LlmAgent(EchoReasoner(), config, builtin_tools())

    async def main() -> None:
        ws = _FakeWebSocket(frames)
        await CallSession(ws, get_agent, idle_timeout_s=5.0).run()
        for frame in ws.sent:
            typer.echo(json.dumps(frame))
        typer.echo(f"closed {ws.close_code} {ws.close_reason}")
        typer.echo("Fake client exchange completed")

    asyncio.run(main())


if __name__ == "__main__":  # pragma: no cover
    app()
