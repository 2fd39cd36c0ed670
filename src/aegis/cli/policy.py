# SPDX-License-Identifier: Apache-2.0
"""Dispatch policy commands."""

from __future__ import annotations

from pathlib import Path

import typer
import yaml

from aegis.config import ConfigVersionError, load_policy

policy_app = typer.Typer(name="policy", help="Dispatch policy commands", add_completion=False)


@policy_app.command()
def show(
    path: Path = typer.Argument(..., help="Policy YAML file"),
):
    """Validate a policy file and print the effective values.

    Examples:
        aegis policy show config/dispatch.yaml
    """
    try:
        policy = load_policy(path)
    except FileNotFoundError:
        typer.echo(f"❌ Policy file not found: {path}")
        raise typer.Exit(1) from None
    except (ConfigVersionError, ValueError) as e:
        typer.echo(f"❌ Invalid policy: {e}")
        raise typer.Exit(1) from None

    typer.echo(yaml.safe_dump(policy.model_dump(mode="json"), sort_keys=False).rstrip())
