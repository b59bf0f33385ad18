"""Operator yes/no confirmation."""

from __future__ import annotations

from collections.abc import Callable

from rich.prompt import Confirm

from hcutils.exceptions import PromptError

type Confirmer = Callable[[str], bool]


def ask_confirmation(question: str) -> bool:
    """Ask a yes/no question on the terminal until answered.

    Raises:
        PromptError: If input ends or is interrupted before an answer.
    """
    try:
        return Confirm.ask(question)
    except EOFError:
        raise PromptError("No answer: input closed before confirmation") from None
    except KeyboardInterrupt:
        raise PromptError("No answer: confirmation interrupted") from None
