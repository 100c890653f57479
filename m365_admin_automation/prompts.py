"""
Interactive prompts — the only place that reads from the terminal.
Produces validated selections that are handed to the non-interactive layers.
"""

from __future__ import annotations

from typing import Callable, Sequence, TypeVar

T = TypeVar("T")

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]

YES = {"y", "yes"}
NO = {"n", "no"}


def confirm(question: str, default: bool = False,
            input_fn: InputFn = input, output: OutputFn = print) -> bool:
    """Ask a yes/no question until it gets an answer. Empty input returns ``default``."""
    hint = "[Y/n]" if default else "[y/N]"
    while True:
        answer = input_fn(f"{question} {hint} ").strip().lower()
        if not answer:
            return default
        if answer in YES:
            return True
        if answer in NO:
            return False
        output("  Please answer 'y' or 'n'.")


def parse_selection(text: str, count: int) -> list[int]:
    """
    Parse "all", "1,3", "2-4" or combinations into zero-based indexes.
    Indexes come back sorted and de-duplicated. Raises ValueError on bad input.
    """
    text = text.strip().lower()
    if text in ("a", "all", "*"):
        return list(range(count))
    if not text:
        raise ValueError("Empty selection")

    picked: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if "-" in part:
            lo_text, hi_text = part.split("-", 1)
            lo, hi = int(lo_text), int(hi_text)
            if lo > hi:
                raise ValueError(f"Bad range: {part}")
            numbers = range(lo, hi + 1)
        else:
            numbers = range(int(part), int(part) + 1)
        for n in numbers:
            if not 1 <= n <= count:
                raise ValueError(f"{n} is not between 1 and {count}")
            picked.add(n - 1)
    return sorted(picked)


def select_items(
    items: Sequence[T],
    describe: Callable[[T], str],
    title: str = "Select items",
    input_fn: InputFn = input,
    output: OutputFn = print,
) -> list[T]:
    """Numbered menu; returns the chosen items in listing order. 'q' returns []."""
    if not items:
        return []
    output(f"\n  {title}:")
    for idx, item in enumerate(items, start=1):
        output(f"    {idx:>3}. {describe(item)}")
    while True:
        answer = input_fn("  Enter numbers (e.g. 1,3-5), 'all', or 'q' to cancel: ")
        if answer.strip().lower() in ("q", "quit"):
            return []
        try:
            return [items[i] for i in parse_selection(answer, len(items))]
        except ValueError as e:
            output(f"  Invalid selection: {e}")
