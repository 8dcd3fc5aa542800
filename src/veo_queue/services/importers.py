"""Bulk prompt sources: TXT and CSV files."""

import csv
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()

SUPPORTED_SUFFIXES = (".txt", ".csv")


@dataclass(frozen=True)
class PromptSpec:
    """One raw prompt record to feed into ``enqueue``."""

    prompt: str
    negative_prompt: str | None = None
    seed: int | None = None
    person_generation: str | None = None


def _column(row: dict[str | None, str | None], *names: str) -> str:
    for name in names:
        value = row.get(name)
        if value:
            return value.strip()
    return ""


def read_txt(path: Path) -> Iterator[PromptSpec]:
    """Yield one prompt per non-blank line."""
    text = Path(path).read_text(encoding="utf-8")
    for line in text.splitlines():
        line = line.strip()
        if line:
            yield PromptSpec(prompt=line)


def read_csv(path: Path) -> Iterator[PromptSpec]:
    """Yield prompts from a CSV file with a header row.

    Recognised columns: ``prompt``, ``negativePrompt``, ``seed`` and
    ``personGeneration`` (snake_case spellings also accepted). Rows with an
    empty prompt or a non-integer seed are skipped.
    """
    with Path(path).open(newline="", encoding="utf-8-sig") as f:
        for row in csv.DictReader(f):
            prompt = _column(row, "prompt")
            if not prompt:
                continue

            seed_text = _column(row, "seed")
            try:
                seed = int(seed_text) if seed_text else None
            except ValueError:
                logger.debug("Skipping CSV row with invalid seed", path=str(path), seed=seed_text)
                continue

            yield PromptSpec(
                prompt=prompt,
                negative_prompt=_column(row, "negativePrompt", "negative_prompt") or None,
                seed=seed,
                person_generation=_column(row, "personGeneration", "person_generation") or None,
            )


def read_prompts(path: Path) -> Iterator[PromptSpec]:
    """Dispatch on file suffix."""
    suffix = Path(path).suffix.lower()
    if suffix == ".txt":
        return read_txt(path)
    if suffix == ".csv":
        return read_csv(path)
    raise ValueError(f"Unsupported import file type: {suffix or path}")
