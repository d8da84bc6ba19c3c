"""Destructive-action confirmation prompts."""

import sys
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()


class Confirmer:
    """Asks the operator to confirm destructive actions.

    Only an exact, case-insensitive match of the affirmative token confirms;
    empty input, EOF and anything else decline. Without a terminal every prompt
    declines unless the caller passes ``approved=True`` from an explicit flag.
    """

    def __init__(
        self,
        input_fn: Optional[Callable[[str], str]] = None,
        interactive: Optional[bool] = None,
        token: str = "yes",
    ):
        self.input_fn = input_fn or input
        if interactive is None:
            interactive = input_fn is not None or sys.stdin.isatty()
        self.interactive = interactive
        self.token = token

    def confirm(self, question: str, *, approved: bool = False, flag: Optional[str] = None) -> bool:
        if approved:
            logger.info("Confirmed by flag", question=question, flag=flag)
            return True

        if not self.interactive:
            logger.warning(
                "No terminal to confirm on; declining",
                question=question,
                approve_with=flag,
            )
            return False

        try:
            reply = self.input_fn(f"{question} [{self.token}/NO]: ")
        except EOFError:
            return False
        return reply.lower() == self.token.lower()
