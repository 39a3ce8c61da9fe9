"""Approval capabilities.

An approval capability is any callable taking a prompt and returning
whether the operator approves. The order submission protocol asks it
before an order is sent and for every question the broker raises.
"""

from typing import Callable

import click

Approval = Callable[[str], bool]


def console_approval(prompt: str) -> bool:
    """Ask the operator on the console.

    End of input counts as a refusal.
    """
    click.echo(prompt)
    try:
        return click.confirm("Confirm?", default=None)
    except click.Abort:
        return False
