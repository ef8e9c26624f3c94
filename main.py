#!/usr/bin/env python3
"""
SnippetVault -- command-line administration for a local snippet library.

Usage:
  python main.py create-user ada@example.com
  python main.py export ada@example.com --out backup.json
  python main.py export ada@example.com --no-metadata
  python main.py import ada@example.com snippets.code-snippets --language python
  python main.py detect script.txt
  python main.py serve --port 8000

Environment variables are read through core.config (DATABASE_URL,
AUTH_DATABASE_URL, SECRET_KEY, ...). Set DEBUG=true for local use without a
SECRET_KEY.
"""

import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from auth.validation import validate_registration
from core.config import get_settings
from core.languages import detect_language, get_language_label
from library.models import Snippet
from library.store import LibraryStore
from library.transfer import EXPORT_FILENAME, export_snippets_to_json, parse_import


def _read_file(path: str) -> Optional[str]:
    """Read a text file, or print why it cannot be read and return None.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    try:
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"  [!] Could not read file '{path}': {e}")
        return None


def _require_user(user_store: UserStore, email: str) -> Optional[User]:
    user = user_store.get_by_email(email)
    if user is None:
        print(f"  [!] No account for {email}.")
    return user


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_create_user(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    confirm = args.password or getpass.getpass("Confirm password: ")
    errors = validate_registration(args.email, password, confirm)
    if errors:
        for e in errors:
            print(f"  [!] {e.message}")
        return 1

    user_store = UserStore()
    try:
        user_id = user_store.create_user(
            User(email=args.email, display_name=args.name or "", hashed_password=hash_password(password))
        )
    except IntegrityError:
        print(f"  [!] {args.email} is already registered.")
        return 1
    finally:
        user_store.close()
    print(f"Created user {args.email} (id {user_id}).")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    user_store = UserStore()
    library = LibraryStore()
    try:
        user = _require_user(user_store, args.email)
        if user is None:
            return 1
        snippets = library.list_all_user_snippets(user.id)
        payload = export_snippets_to_json(snippets, include_metadata=not args.no_metadata)
    finally:
        library.close()
        user_store.close()

    if args.out == "-":
        print(payload)
    else:
        Path(args.out).write_text(payload, encoding="utf-8")
        print(f"Exported {len(snippets)} snippet(s) to {args.out}.")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    content = _read_file(args.file)
    if content is None:
        return 1
    if len(content.encode("utf-8")) > get_settings().max_import_bytes:
        print("  [!] File is larger than the import limit.")
        return 1

    fmt, result = parse_import(content, args.language)
    if not result.success:
        for issue in result.errors:
            for message in issue.errors:
                print(f"  [!] {message}")
        return 1

    user_store = UserStore()
    library = LibraryStore()
    try:
        user = _require_user(user_store, args.email)
        if user is None:
            return 1
        for item in result.snippets:
            # Collection ids in a file refer to the exporting database.
            library.create_snippet(
                Snippet(
                    user_id=user.id,
                    title=item.title,
                    description=item.description,
                    code=item.code,
                    language=item.language,
                    tags=item.tags,
                    metadata=item.metadata,
                )
            )
            library.update_tag_usage(user.id, item.tags)
    finally:
        library.close()
        user_store.close()

    print(f"Imported {result.valid_count} of {result.total_count} {fmt} snippet(s).")
    for issue in result.errors:
        print(f"  [!] #{issue.index} {issue.title}: {'; '.join(issue.errors)}")
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    content = _read_file(args.file)
    if content is None:
        return 1
    language = detect_language(content)
    print(f"{language} ({get_language_label(language)})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="snippetvault",
        description="Manage a SnippetVault snippet library from the command line.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user ada@example.com --name "Ada"
  python main.py export ada@example.com --out backup.json
  python main.py import ada@example.com vscode.code-snippets --language typescript
  python main.py detect snippet.txt
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create an email/password account")
    p.add_argument("email")
    p.add_argument("--name", help="Display name (default: the part of the email before @)")
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("export", help="Export a user's snippets as JSON")
    p.add_argument("email")
    p.add_argument("--out", default=EXPORT_FILENAME, metavar="FILE", help=f"Output file, - for stdout (default: {EXPORT_FILENAME})")
    p.add_argument("--no-metadata", action="store_true", help="Write only title, description, code, language and tags")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Import a SnippetVault JSON or VS Code snippets file")
    p.add_argument("email")
    p.add_argument("file", metavar="FILE")
    p.add_argument(
        "--language",
        default="javascript",
        metavar="LANG",
        help="Language for VS Code snippets without a scope (default: javascript)",
    )
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("detect", help="Guess the language of a source file")
    p.add_argument("file", metavar="FILE")
    p.set_defaults(func=cmd_detect)

    p = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
