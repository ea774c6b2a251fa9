"""Command line interface for Consul service discovery."""

from consul_discovery.cli.main import cli

__all__ = ["cli"]
