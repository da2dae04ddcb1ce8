import sys

import atheris

with atheris.instrument_imports():
    from redhelper.assistant.commands import Command, ParsedCommand, parse_command, primary_alternate


def TestOneInput(data: bytes) -> None:
    """Parsing must be total: any text yields a ParsedCommand."""
    text = data.decode("utf-8", errors="ignore")

    parsed = parse_command(text)
    assert isinstance(parsed, ParsedCommand)
    assert parse_command(text) == parsed
    if parsed.command is Command.CHANGE_NAME:
        assert parsed.payload

    primary_alternate(text)


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
