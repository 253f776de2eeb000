# ui/prompts.py
from __future__ import annotations

from typing import Optional, Sequence

import click

from pipeliner.model import Option


class ClickPrompt:
    """Prompt port backed by click's terminal prompts."""

    def choose(self, message: str, options: Sequence[Option]) -> Option:
        click.echo(f"\n{message}")
        for i, opt in enumerate(options, start=1):
            click.echo(f"  {i}) {opt.label}")
        picked = click.prompt(
            "Select",
            type=click.IntRange(1, len(options)),
            default=1,
            show_default=True,
        )
        return options[picked - 1]

    def text(self, message: str, default: Optional[str] = None) -> str:
        return click.prompt(message, default=default, show_default=default is not None)
