"""Entry point for `python -m companion_exec`."""

from companion_exec.cli import cli


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
