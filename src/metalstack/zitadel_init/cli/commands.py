"""zitadel-init commands.

Commands:
    zitadel-init init --config bootstrap.yaml
    zitadel-init validate bootstrap.yaml
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Annotated, Callable, Optional

import typer
from pydantic import ValidationError

from metalstack.zitadel_init.config import InitSettings
from metalstack.zitadel_init.logs import configure_logging
from metalstack.zitadel_init.models import InitConfig
from metalstack.zitadel_init.reconcile import (
    CredentialWaitCancelled,
    CredentialWaiter,
    InitError,
    InitResult,
    InitRunner,
    ReconcileError,
    WaitState,
)
from metalstack.zitadel_init.secretstore import KubernetesSecretStore, SecretStoreError
from metalstack.zitadel_init.zitadel import ZitadelAuthError, ZitadelClient, ZitadelError

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: asyncio.Event, waiter: CredentialWaiter) -> None:
    """Turn SIGINT/SIGTERM into cancellation of the run."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def _shutdown() -> None:
        logger.warning("Shutdown requested")
        stop.set()
        # The stop event only reaches the credential wait
        if waiter.state is not WaitState.WAITING and task is not None:
            task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers not supported, %s ignored", sig.name)


async def _async_init(
    settings: InitSettings,
    config: InitConfig,
    store: KubernetesSecretStore | None = None,
    client_factory: Callable[[InitSettings, str], ZitadelClient] = ZitadelClient,
    install_signals: bool = True,
    stop: asyncio.Event | None = None,
) -> InitResult:
    """Wait for the access token, then run the bootstrap."""
    if stop is None:
        stop = asyncio.Event()
    if store is None:
        store = KubernetesSecretStore.from_environment()

    waiter = CredentialWaiter(
        store,
        namespace=settings.effective_token_namespace,
        name=settings.token_secret_name,
        key=settings.token_secret_key,
        poll_interval=settings.poll_interval,
        stop=stop,
    )
    if install_signals:
        _install_signal_handlers(stop, waiter)

    token = await waiter.wait()
    # A shutdown may arrive while the last read is in flight
    if stop.is_set():
        raise CredentialWaitCancelled("shutdown requested before the bootstrap started")

    async with client_factory(settings, token) as zitadel:
        runner = InitRunner(
            zitadel,
            store,
            config,
            namespace=settings.namespace,
            secret_name=settings.secret_name,
        )
        return await runner.run()


def init(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to the bootstrap configuration (YAML or JSON)",
            dir_okay=False,
        ),
    ] = None,
    endpoint: Annotated[
        Optional[str],
        typer.Option("--endpoint", "-e", help="Zitadel server address"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Zitadel server port"),
    ] = None,
    external_domain: Annotated[
        Optional[str],
        typer.Option("--external-domain", help="Host authority presented to Zitadel"),
    ] = None,
    insecure: Annotated[
        Optional[bool],
        typer.Option("--insecure/--secure", help="Connect without TLS"),
    ] = None,
    skip_verify_tls: Annotated[
        Optional[bool],
        typer.Option("--skip-verify-tls", help="Accept untrusted TLS certificates"),
    ] = None,
    namespace: Annotated[
        Optional[str],
        typer.Option("--namespace", "-n", help="Namespace of the client credentials secret"),
    ] = None,
    secret_name: Annotated[
        Optional[str],
        typer.Option("--secret", help="Name of the client credentials secret"),
    ] = None,
    token_secret_name: Annotated[
        Optional[str],
        typer.Option("--token-secret", help="Secret holding the personal access token"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
) -> None:
    """Provision Zitadel and store the OIDC client credentials.

    Safe to run repeatedly: existing resources are detected and updated in
    place, an existing client secret is preserved.

    Example:
        zitadel-init init --config bootstrap.yaml --namespace metal-control-plane
    """
    try:
        settings = InitSettings().with_overrides(
            config_path=config_path,
            endpoint=endpoint,
            port=port,
            external_domain=external_domain,
            insecure=insecure,
            skip_verify_tls=skip_verify_tls,
            namespace=namespace,
            secret_name=secret_name,
            token_secret_name=token_secret_name,
        )
    except ValidationError as e:
        typer.secho(f"Invalid settings: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    configure_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        json_format=settings.log_json,
    )

    if settings.config_path is None:
        typer.secho(
            "Error: no configuration given, use --config or ZITADEL_INIT_CONFIG_PATH",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)

    try:
        config = InitConfig.from_file(settings.config_path)
    except Exception as e:
        typer.secho(f"Error loading config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.echo(f"Initializing Zitadel at {settings.base_url}")

    try:
        result = asyncio.run(_async_init(settings, config))
    except asyncio.CancelledError:
        typer.secho("Cancelled", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except (ZitadelAuthError, InitError) as e:
        cause = e.cause if isinstance(e, InitError) else e
        if isinstance(cause, ZitadelAuthError):
            typer.secho(f"Authentication failed: {e}", fg=typer.colors.RED, err=True)
        else:
            typer.secho(f"Error running init: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except (ReconcileError, ZitadelError, SecretStoreError) as e:
        typer.secho(f"Error running init: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except Exception as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        if verbose:
            import traceback

            traceback.print_exc()
        raise typer.Exit(1)

    typer.echo("\n" + result.summary())
    typer.secho(
        f"\n✓ Client credentials stored in {settings.namespace}/{settings.secret_name}",
        fg=typer.colors.GREEN,
    )


def validate(
    config_path: Path = typer.Argument(
        help="Path to the bootstrap configuration (YAML or JSON)",
        dir_okay=False,
    ),
) -> None:
    """Check a bootstrap configuration without contacting Zitadel.

    Example:
        zitadel-init validate bootstrap.yaml
    """
    try:
        config = InitConfig.from_file(config_path)
    except Exception as e:
        typer.secho(f"Invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.echo(
        f"Config: project={config.project.id} application={config.application.name} "
        f"{len(config.users)} users, {len(config.identity_providers)} identity providers"
    )
    for warning in config.validate_references():
        typer.secho(f"Warning: {warning}", fg=typer.colors.YELLOW)
