from __future__ import annotations
import sys
from typing import Callable, Optional, Sequence, TextIO


class Prompter:
    """Line-oriented questions on a terminal; ``input_fn`` is swapped for scripted answers in tests."""

    def __init__(self, input_fn: Callable[[str], str] = input, output: Optional[TextIO] = None):
        self.input_fn = input_fn
        self.output = output or sys.stdout

    def say(self, text: str = "") -> None:
        self.output.write(text + "\n")

    def section(self, title: str) -> None:
        self.say()
        self.say(title)
        self.say("-" * len(title))

    def ask(self, question: str, default: str = "", *, hint: str = "") -> str:
        if hint:
            self.say(hint)
        suffix = f" [default: {default}]" if default else ""
        answer = self.input_fn(f"{question}{suffix}: ").strip()
        return answer or default

    def confirm(self, question: str, default: bool = True) -> bool:
        marker = "Y/n" if default else "y/N"
        answer = self.input_fn(f"{question} ({marker}): ").strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    def ask_int(self, question: str, default: int, *, validate: Callable[[str], int]) -> int:
        """Repeat until ``validate`` accepts the answer; it raises ValueError (or a subclass) to reject."""
        while True:
            raw = self.ask(question, str(default))
            try:
                return validate(raw)
            except ValueError as e:
                self.say(f"  {e}")

    def choose(self, question: str, options: Sequence[str], default: int = 1) -> int:
        """1-based index of the chosen option."""
        for i, opt in enumerate(options, start=1):
            self.say(f"{i}. {opt}")
        while True:
            raw = self.ask(question, str(default))
            if raw.isdigit() and 1 <= int(raw) <= len(options):
                return int(raw)
            self.say(f"  Invalid option. Please select 1-{len(options)}.")
