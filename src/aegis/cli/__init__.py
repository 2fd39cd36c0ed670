# SPDX-License-Identifier: Apache-2.0
"""Aegis CLI package with modular command structure."""

from __future__ import annotations

import typer

app = typer.Typer(
    name="aegis",
    add_completion=False,
    help="Aegis dispatch core: guard bookings from request to payment",
)

from .bookings import bookings_app  # noqa: E402
from .policy import policy_app  # noqa: E402
from .simulate import simulate  # noqa: E402

app.command()(simulate)
app.add_typer(policy_app, name="policy")
app.add_typer(bookings_app, name="bookings")


if __name__ == "__main__":
    app()
