"""Module entrypoint so `python -m autofill` works."""

from autofill.cli import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
