"""Terminal conflict prompts."""

from __future__ import annotations

import threading

import click

from filemirror.mirror.conflict import CallbackPrompter, ConflictAnswer, ConflictQuery

_CHOICES = click.Choice([answer.value for answer in ConflictAnswer], case_sensitive=False)


class ClickPrompter(CallbackPrompter):
    """Asks about conflicts on the terminal, one question at a time.

    Questions are asked from the prompt thread, so workers keep serving
    other paths while a person thinks.
    """

    def __init__(self) -> None:
        super().__init__(self._ask_terminal)
        self._output_lock = threading.Lock()

    def _ask_terminal(self, query: ConflictQuery) -> ConflictAnswer:
        with self._output_lock:
            click.echo()
            click.echo(click.style("Conflict: ", fg="yellow") + query.describe())
            reply = click.prompt(
                "Overwrite? [y]es / [n]o / [a]ll / [q]uit this path",
                type=_CHOICES,
                default=ConflictAnswer.NO.value,
                show_choices=False,
            )
        return ConflictAnswer(reply.lower())
