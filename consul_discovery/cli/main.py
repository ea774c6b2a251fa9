"""Main CLI entry point for consul-discovery."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import click

from consul_discovery.cli.async_runner import coro
from consul_discovery.core.exceptions import DiscoveryError
from consul_discovery.core.settings import get_discovery_settings
from consul_discovery.infra.discovery.sd_config import ConsulSDConfig
from consul_discovery.infra.discovery.service import ConsulDiscovery
from consul_discovery.infra.logging.config import setup_logging

if TYPE_CHECKING:
    from consul_discovery.infra.discovery.api_config import ConsulAPIConfig
    from consul_discovery.infra.discovery.models import ServiceNode


@click.group()
@click.version_option(version="0.1.0", prog_name="consul-discovery")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL.",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Consul service discovery tools.

    \b
    Quick Start:
      consul-discovery targets --server consul:8500 --service api
      consul-discovery targets --tag http --watch 3
    """
    ctx.ensure_object(dict)
    overrides = {"log_level": log_level.upper()} if log_level else {}
    setup_logging(**overrides)


@cli.command()
@click.option("--server", default="", help="Registry address (default localhost:8500).")
@click.option("--scheme", default="", type=click.Choice(["", "http", "https"]))
@click.option("--datacenter", default="", help="Datacenter; empty asks the agent.")
@click.option("--token", default=None, help="ACL token (default CONSUL_HTTP_TOKEN).")
@click.option("--service", "services", multiple=True, help="Service to watch; repeatable.")
@click.option("--tag", "tags", multiple=True, help="Required service tag; repeatable.")
@click.option("--tag-separator", default=None, help="Separator used to join tags.")
@click.option("--no-stale", is_flag=True, help="Require reads from the leader.")
@click.option(
    "--timeout",
    default=30.0,
    show_default=True,
    help="Seconds to wait for the first snapshot.",
)
@click.option(
    "--watch",
    "updates",
    default=0,
    type=click.IntRange(min=0),
    help="Print this many further snapshots as the catalog changes.",
)
@click.pass_obj
@coro
async def targets(
    obj: dict[str, Any],
    server: str,
    scheme: str,
    datacenter: str,
    token: str | None,
    services: tuple[str, ...],
    tags: tuple[str, ...],
    tag_separator: str | None,
    no_stale: bool,
    timeout: float,
    updates: int,
) -> None:
    """Print discovered targets as JSON lines, one per service instance."""
    sd_config = ConsulSDConfig(
        server=server,
        scheme=scheme,
        datacenter=datacenter,
        token=token,
        services=services,
        tags=tags,
        tag_separator=tag_separator,
        allow_stale=False if no_stale else None,
    )

    discovery = ConsulDiscovery(get_discovery_settings(), transport=obj.get("transport"))
    async with discovery:
        try:
            api_config = await discovery.acquire(sd_config)
            await api_config.watcher.wait_synced(timeout=timeout)
        except DiscoveryError as e:
            raise click.ClickException(e.detail) from e
        except TimeoutError as e:
            raise click.ClickException(f"no snapshot from the registry within {timeout}s") from e

        _echo_targets(api_config)
        for _ in range(updates):
            index = api_config.watcher.index
            while api_config.watcher.index == index:
                if api_config.watcher.has_crashed:
                    raise click.ClickException("watcher stopped unexpectedly")
                await asyncio.sleep(0.1)
            _echo_targets(api_config)


def _echo_targets(api_config: ConsulAPIConfig) -> None:
    for node in api_config.get_service_nodes():
        click.echo(json.dumps(target_labels(api_config, node), sort_keys=True))


def target_labels(api_config: ConsulAPIConfig, node: ServiceNode) -> dict[str, Any]:
    """Flatten one health entry into the fields a scrape target is labelled with."""
    return {
        "address": f"{node.address}:{node.service.port}",
        "datacenter": api_config.datacenter,
        "health": node.health,
        "node": node.node.node,
        "service": node.service.service,
        "service_id": node.service.id,
        "tags": api_config.join_tags(node.service.tags),
    }
