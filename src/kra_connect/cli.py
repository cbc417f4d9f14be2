"""CLI for the KRA Connect client.

Commands:
- verify-pin: Verify one or more KRA PINs
- verify-tcc: Verify a Tax Compliance Certificate against a PIN
- validate-eslip: Validate a payment e-slip
- taxpayer-details: Fetch a taxpayer profile with obligations
- file-nil-return: File a nil return (never cached)
- stats: Show rate limiter and cache state
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Protocol

import typer
from rich import print as rprint
from rich import print_json

from .client import KraClient
from .config import KraConfig
from .config_file import load_config_file
from .exceptions import KraConnectError


class ClientBuilder(Protocol):
    """Protocol for constructing the client used by CLI commands."""

    def __call__(self, *, config: KraConfig) -> KraClient:
        """Build a client for the given configuration."""
        ...


ConfigLoader = Callable[[], KraConfig]


@dataclass(frozen=True)
class CliContext:
    """Runtime CLI context for a single command invocation."""

    load_config: ConfigLoader
    client_builder: ClientBuilder
    config_path: Path | None = None

    def build_client(self) -> KraClient:
        config = self.load_config()
        if self.config_path is not None:
            config = config.with_file_overrides(load_config_file(self.config_path))
        return self.client_builder(config=config)


class CliContextNotInitialisedError(typer.BadParameter):
    """Raised when CLI context is missing."""

    def __init__(self) -> None:
        super().__init__("CLI context is not initialised. Use the kra-connect entry point.")


def _get_context(ctx: typer.Context) -> CliContext:
    if not isinstance(ctx.obj, CliContext):
        raise CliContextNotInitialisedError()
    return ctx.obj


def _fail(exc: KraConnectError) -> typer.Exit:
    rprint(f"[red]✗ {type(exc).__name__}:[/red] {exc.message}")
    if exc.status_code is not None or exc.attempts > 1:
        rprint(f"  status: {exc.status_code}  attempts: {exc.attempts}")
    return typer.Exit(code=1)


def create_app(
    client_builder: ClientBuilder, load_config: ConfigLoader | None = None
) -> typer.Typer:
    """Create a Typer app wired with the provided client builder."""
    config_loader = load_config or KraConfig.from_env
    app = typer.Typer(
        add_completion=False,
        help="KRA GavaConnect client: rate limited, retried and cached API calls",
    )

    @app.callback()
    def main(
        ctx: typer.Context,
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="TOML config file overriding environment settings",
            ),
        ] = None,
    ) -> None:
        """Initialise CLI context."""
        ctx.obj = CliContext(
            load_config=config_loader,
            client_builder=client_builder,
            config_path=config_path,
        )

    def run(ctx: typer.Context, call: Callable[[KraClient], object]) -> None:
        state = _get_context(ctx)
        try:
            result = call(state.build_client())
        except KraConnectError as exc:
            raise _fail(exc) from exc
        print_json(data=result)

    @app.command(name="verify-pin")
    def verify_pin(
        ctx: typer.Context,
        pins: Annotated[list[str], typer.Argument(help="One or more KRA PINs")],
    ) -> None:
        """Verify KRA PINs (batched sequentially when several are given)."""
        if len(pins) == 1:
            run(ctx, lambda client: client.verify_pin(pins[0]))
            return

        def verify_all(client: KraClient) -> list[dict[str, object]]:
            return [
                {"value": item.value}
                if item.ok
                else {"error": item.error.to_dict() if item.error else None}
                for item in client.verify_pins_batch(pins)
            ]

        run(ctx, verify_all)

    @app.command(name="verify-tcc")
    def verify_tcc(
        ctx: typer.Context,
        tcc: Annotated[str, typer.Argument(help="Tax Compliance Certificate number")],
        pin: Annotated[str, typer.Option("--pin", "-p", help="KRA PIN the TCC belongs to")],
    ) -> None:
        """Verify a Tax Compliance Certificate."""
        run(ctx, lambda client: client.verify_tcc(tcc, pin))

    @app.command(name="validate-eslip")
    def validate_eslip(
        ctx: typer.Context,
        eslip: Annotated[str, typer.Argument(help="Payment e-slip number")],
    ) -> None:
        """Validate a payment e-slip."""
        run(ctx, lambda client: client.validate_eslip(eslip))

    @app.command(name="taxpayer-details")
    def taxpayer_details(
        ctx: typer.Context,
        pin: Annotated[str, typer.Argument(help="KRA PIN")],
    ) -> None:
        """Fetch a taxpayer profile together with its obligations."""
        run(ctx, lambda client: client.get_taxpayer_details(pin))

    @app.command(name="file-nil-return")
    def file_nil_return(
        ctx: typer.Context,
        pin: Annotated[str, typer.Argument(help="KRA PIN")],
        obligation: Annotated[int, typer.Option("--obligation", help="Obligation code")],
        month: Annotated[int, typer.Option("--month", help="Period month (1-12)")],
        year: Annotated[int, typer.Option("--year", help="Period year")],
    ) -> None:
        """File a nil return for one obligation and period."""
        run(ctx, lambda client: client.file_nil_return(pin, obligation, month, year))

    @app.command()
    def stats(ctx: typer.Context) -> None:
        """Show rate limiter and cache statistics for a fresh client."""
        run(
            ctx,
            lambda client: {
                "config": client.config.to_dict(),
                "rate_limit": client.get_rate_limit_stats(),
                "cache": client.get_cache_stats(),
            },
        )

    return app
