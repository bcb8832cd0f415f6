"""``python -m switchboard``: the CLI, defaulting to ``serve`` when no command is given."""
from __future__ import annotations
import sys
from switchboard.cli import app

def main(argv: list[str] | None = None):
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0].startswith("-") and args[0] not in ("--help", "-h"):
        args.insert(0, "serve")
    app(args=args, prog_name="switchboard")

if __name__ == "__main__":
    main()
