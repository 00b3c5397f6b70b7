#!/usr/bin/env python3
"""pypass - Command line front end for pass, the standard UNIX password manager.

Every command runs pass in batch mode, so it also works from scripts and
agents without a pinentry dialog.
"""

import argparse
import getpass
import os
import subprocess
import sys
from importlib.metadata import version
from pathlib import Path

from . import store
from .audit import AuditLogger
from .executor import ExecutionError

PASSPHRASE_ENV = "PASSWORD_STORE_PASSPHRASE"
AUDIT_LOG_ENV = "PASSWORD_STORE_AUDIT_LOG"
EXECUTABLE_ENV = "PASSWORD_STORE_EXECUTABLE"


def get_options(args):
    """Build store options from args and environment."""
    store_dir = args.store or os.environ.get(store.STORE_DIR_ENV) or None
    if store_dir:
        store_dir = str(Path(store_dir).expanduser())
    return store.Options(
        store_dir=store_dir,
        timeout=args.timeout,
        executable=os.environ.get(EXECUTABLE_ENV) or None,
    )


def get_audit_logger(args):
    """Get an audit logger if one was requested."""
    log_path = args.audit_log or os.environ.get(AUDIT_LOG_ENV)
    if not log_path:
        return None
    return AuditLogger(Path(log_path).expanduser())


def get_passphrase(prompt="Enter GPG passphrase: "):
    """Get the GPG passphrase from environment variable or prompt.

    Checks PASSWORD_STORE_PASSPHRASE first for automation/testing.
    Falls back to interactive getpass prompt if not set.

    Security note: environment variables may be visible to other processes
    of the same user. Only use it in isolated environments.
    """
    env_passphrase = os.environ.get(PASSPHRASE_ENV)
    if env_passphrase:
        return env_passphrase
    return getpass.getpass(prompt)


def read_secret(name):
    """Read new entry content from piped stdin or a confirmed prompt."""
    if not sys.stdin.isatty():
        return sys.stdin.buffer.read()

    secret = getpass.getpass(f"Enter password for {name}: ")
    confirm = getpass.getpass(f"Retype password for {name}: ")
    if secret != confirm:
        print("Error: the entered passwords do not match.", file=sys.stderr)
        sys.exit(1)
    return secret.encode("utf-8")


def copy_to_clipboard(text):
    """Copy text to clipboard using appropriate tool."""
    if os.path.exists("/proc/version"):
        with open("/proc/version") as f:
            proc_version = f.read().lower()
        if "microsoft" in proc_version or "wsl" in proc_version:
            cmd = ["clip.exe"]
        elif os.environ.get("WAYLAND_DISPLAY"):
            cmd = ["wl-copy"]
        else:
            cmd = ["xclip", "-selection", "clipboard"]
    elif sys.platform == "darwin":
        cmd = ["pbcopy"]
    else:
        print(text)
        print("(No clipboard tool available - printing to stdout)", file=sys.stderr)
        return

    try:
        proc = subprocess.run(cmd, input=text.encode("utf-8"), capture_output=True)
    except FileNotFoundError:
        print(text)
        print("(Clipboard tool not found - printing to stdout)", file=sys.stderr)
        return

    if proc.returncode == 0:
        print("(copied to clipboard)")
    else:
        print(text)
        print("(Clipboard failed - printing to stdout)", file=sys.stderr)


def print_tree(node, prefix=""):
    """Print a nested dict as an indented tree."""
    items = list(node.items())
    for i, (name, children) in enumerate(items):
        is_last = i == len(items) - 1
        connector = "└── " if is_last else "├── "
        print(f"{prefix}{connector}{name}")
        if children:
            extension = "    " if is_last else "│   "
            print_tree(children, prefix + extension)


def cmd_init(args):
    """Initialize the store for GPG identities."""
    options = get_options(args)
    store.init(args.gpg_ids, args.path or "", options,
               audit_logger=get_audit_logger(args))
    target = store.get_store_dir(options)
    if args.path:
        target = target / args.path
    print(f"Password store initialized for {', '.join(args.gpg_ids)} ({target})")


def cmd_ls(args):
    """List entry names, one per line."""
    for name in store.list_entries(args.subfolder or "", get_options(args)):
        print(name)


def cmd_tree(args):
    """Display hierarchical structure."""
    options = get_options(args)
    print(args.subfolder or "Password Store")
    print_tree(store.tree(args.subfolder or "", options))


def cmd_find(args):
    """Search entry names."""
    for name in store.find_entries(args.patterns, get_options(args)):
        print(name)


def cmd_show(args):
    """Decrypt and print an entry."""
    options = get_options(args)
    passphrase = get_passphrase()
    audit_logger = get_audit_logger(args)

    if args.clip or args.line is not None:
        number = 1 if args.line is None else args.line
        line = store.show_line(args.name, passphrase, number, options,
                               audit_logger=audit_logger)
        if args.clip:
            copy_to_clipboard(line)
        else:
            print(line)
        return

    content = store.show(args.name, passphrase, options, audit_logger=audit_logger)
    sys.stdout.buffer.write(content)
    sys.stdout.flush()


def cmd_insert(args):
    """Insert a new entry."""
    options = get_options(args)
    content = read_secret(args.name)
    store.insert(args.name, content, args.force, options,
                 audit_logger=get_audit_logger(args))
    print("Saved.")


def cmd_generate(args):
    """Generate a password into an entry."""
    password = store.generate(
        args.name,
        args.length,
        no_symbols=args.no_symbols,
        in_place=args.in_place,
        force=args.force,
        options=get_options(args),
        audit_logger=get_audit_logger(args),
    )
    if args.clip:
        copy_to_clipboard(password)
    else:
        print(password)


def cmd_rm(args):
    """Remove an entry or folder."""
    store.remove(args.name, args.recursive, args.force, get_options(args),
                 audit_logger=get_audit_logger(args))
    print("Removed.")


def cmd_mv(args):
    """Move/rename an entry."""
    store.move(args.old_name, args.new_name, args.force, get_options(args),
               audit_logger=get_audit_logger(args))
    print("Moved.")


def cmd_cp(args):
    """Copy an entry."""
    store.copy(args.old_name, args.new_name, args.force, get_options(args),
               audit_logger=get_audit_logger(args))
    print("Copied.")


def cmd_git(args):
    """Run git inside the store."""
    git_args = args.git_args
    if git_args and git_args[0] == "--":
        git_args = git_args[1:]
    if not git_args:
        print("No git command specified", file=sys.stderr)
        sys.exit(1)

    out = store.git(git_args, get_options(args), audit_logger=get_audit_logger(args))
    sys.stdout.buffer.write(out)
    sys.stdout.flush()


def cmd_gpg_id(args):
    """Print the GPG identities used for a folder."""
    for gpg_id in store.read_gpg_id(args.subfolder or "", get_options(args)):
        print(gpg_id)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pypass",
        description="pypass - Batch-mode front end for pass"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {version('pass-cli')}"
    )
    parser.add_argument("--store", help="Password store directory (default: $PASSWORD_STORE_DIR or ~/.password-store)")
    parser.add_argument("--timeout", type=float, help="Seconds before a pass invocation is aborted")
    parser.add_argument("--audit-log", help=f"Append an operation log to this file (default: ${AUDIT_LOG_ENV})")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Initialize the store for GPG identities")
    init_parser.add_argument("gpg_ids", nargs="+", help="GPG key IDs or fingerprints")
    init_parser.add_argument("-p", "--path", help="Subfolder to initialize")

    # ls
    ls_parser = subparsers.add_parser("ls", help="List entries")
    ls_parser.add_argument("subfolder", nargs="?", help="Subfolder")

    # tree
    tree_parser = subparsers.add_parser("tree", help="Display hierarchical structure")
    tree_parser.add_argument("subfolder", nargs="?", help="Subfolder")

    # find
    find_parser = subparsers.add_parser("find", help="Search entry names")
    find_parser.add_argument("patterns", nargs="+", help="Name patterns (glob, case-insensitive)")

    # show
    show_parser = subparsers.add_parser("show", help="Decrypt and print an entry")
    show_parser.add_argument("name", help="Entry name")
    show_parser.add_argument("-c", "--clip", action="store_true", help="Copy to clipboard instead of printing")
    show_parser.add_argument("--line", type=int, help="Only this line (default with --clip: 1)")

    # insert
    insert_parser = subparsers.add_parser("insert", help="Insert a new entry (content from stdin if piped)")
    insert_parser.add_argument("name", help="Entry name")
    insert_parser.add_argument("-f", "--force", action="store_true", help="Overwrite an existing entry")

    # generate
    generate_parser = subparsers.add_parser("generate", help="Generate a password into an entry")
    generate_parser.add_argument("name", help="Entry name")
    generate_parser.add_argument("length", nargs="?", type=int, help="Password length")
    generate_parser.add_argument("-n", "--no-symbols", action="store_true", help="Letters and digits only")
    generate_parser.add_argument("-c", "--clip", action="store_true", help="Copy to clipboard instead of printing")
    overwrite_group = generate_parser.add_mutually_exclusive_group()
    overwrite_group.add_argument("-i", "--in-place", action="store_true", help="Replace only the first line")
    overwrite_group.add_argument("-f", "--force", action="store_true", help="Overwrite an existing entry")

    # rm
    rm_parser = subparsers.add_parser("rm", help="Remove an entry or folder")
    rm_parser.add_argument("name", help="Entry name")
    rm_parser.add_argument("-r", "--recursive", action="store_true", help="Remove a folder of entries")
    rm_parser.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")

    # mv
    mv_parser = subparsers.add_parser("mv", help="Move/rename an entry or folder")
    mv_parser.add_argument("old_name", help="Current name")
    mv_parser.add_argument("new_name", help="New name")
    mv_parser.add_argument("-f", "--force", action="store_true", help="Overwrite an existing destination")

    # cp
    cp_parser = subparsers.add_parser("cp", help="Copy an entry or folder")
    cp_parser.add_argument("old_name", help="Source name")
    cp_parser.add_argument("new_name", help="Destination name")
    cp_parser.add_argument("-f", "--force", action="store_true", help="Overwrite an existing destination")

    # git
    git_parser = subparsers.add_parser("git", help="Run git inside the store")
    git_parser.add_argument("git_args", nargs=argparse.REMAINDER, help="git arguments (use -- to separate from flags)")

    # gpg-id
    gpg_id_parser = subparsers.add_parser("gpg-id", help="Show the GPG identities for a folder")
    gpg_id_parser.add_argument("subfolder", nargs="?", help="Subfolder")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "init": cmd_init,
        "ls": cmd_ls,
        "tree": cmd_tree,
        "find": cmd_find,
        "show": cmd_show,
        "insert": cmd_insert,
        "generate": cmd_generate,
        "rm": cmd_rm,
        "mv": cmd_mv,
        "cp": cmd_cp,
        "git": cmd_git,
        "gpg-id": cmd_gpg_id,
    }

    try:
        commands[args.command](args)
    except ExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e.strerror}: {e.filename}", file=sys.stderr)
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
