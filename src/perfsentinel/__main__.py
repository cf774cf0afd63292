from __future__ import annotations

from perfsentinel.cli import app


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
