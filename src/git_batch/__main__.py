"""Module entrypoint for `python -m git_batch`."""

from __future__ import annotations

from .core import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
