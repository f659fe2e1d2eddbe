"""Console entry point for running a host, client or admin over Reticulum."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Callable
from typing import Any

from .admin import Admin
from .client import Client
from .config import load_config
from .constants import GroupEvent
from .host import Host

log_level = os.environ.get("PEERGROUPS_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

QUIT = "/quit"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peergroups", description="Host-moderated group chat over Reticulum"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    host = sub.add_parser("host", help="Run a group host")
    host.add_argument("--secret", help="Admin secret (overrides config)")
    host.add_argument("--auto-approve", action="store_true", help="Approve every join request")
    host.add_argument(
        "--banned-word", action="append", default=[], metavar="WORD", help="Word to censor"
    )

    join = sub.add_parser("join", help="Join a group as a client")
    join.add_argument("host_id", nargs="?", help="Host PeerId (default: config host_id)")
    join.add_argument("nickname", nargs="?", help="Nickname (default: config nickname)")

    admin = sub.add_parser("admin", help="Administer a group remotely")
    admin.add_argument("host_id", nargs="?", help="Host PeerId (default: config host_id)")
    admin.add_argument("secret", nargs="?", help="Admin secret (default: config admin_secret)")

    return parser


def fill_from_config(args: argparse.Namespace, config: dict[str, Any]) -> None:
    """Take connection arguments left off the command line from config.

    Raises:
        ValueError: If a required value is in neither place
    """
    if args.command == "host":
        return
    fallbacks = {"host_id": "host_id", "nickname": "nickname", "secret": "admin_secret"}
    missing = []
    for name, key in fallbacks.items():
        if not hasattr(args, name) or getattr(args, name):
            continue
        value = config.get(key)
        if value:
            setattr(args, name, value)
        else:
            missing.append(name)
    if missing:
        raise ValueError(f"missing {', '.join(missing)}: pass on the command line or set in config")


class HostConsole:
    """Line-oriented moderation console for a Host."""

    def __init__(self, host: Host, *, auto_approve: bool = False) -> None:
        self.host = host
        self.auto_approve = auto_approve
        self.pending: dict[str, tuple[Callable[[], None], Callable[..., None]]] = {}
        host.subscribe(GroupEvent.JOIN_REQUEST, self._on_join_request)
        host.subscribe(GroupEvent.CONNECT, lambda peer_id: print(f"* {peer_id} connected"))
        host.subscribe(GroupEvent.MEMBER_JOINED, lambda i, n: print(f"* {n} ({i}) joined"))
        host.subscribe(GroupEvent.MEMBER_LEFT, lambda i, n: print(f"* {n} ({i}) left"))
        host.subscribe(GroupEvent.MESSAGE, lambda text, i, n: print(f"<{n}> {text}"))
        host.subscribe(
            GroupEvent.PRIVATE_MESSAGE, lambda text, i, to: print(f"[{i} -> {to}] {text}")
        )
        host.subscribe(GroupEvent.MESSAGE_CENSORED, lambda o, c, i: print(f"* censored {i}"))
        host.subscribe(GroupEvent.ERROR, lambda err: print(f"! {err}"))

    def _on_join_request(
        self, peer_id: str, nickname: str, approve: Callable[[], None], reject: Callable[..., None]
    ) -> None:
        if self.auto_approve:
            approve()
            return
        self.pending[peer_id] = (approve, reject)
        print(f"* {nickname} ({peer_id}) wants to join: /approve {peer_id} or /reject {peer_id}")

    def handle_line(self, line: str) -> bool:
        """Run one console line. Returns False when the console should exit."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            self.host.send(line)
            return True

        cmd, *args = line.split()
        if cmd == QUIT:
            self.host.close()
            return False
        if cmd == "/approve" and args:
            pending = self.pending.pop(args[0], None)
            if pending:
                pending[0]()
        elif cmd == "/reject" and args:
            pending = self.pending.pop(args[0], None)
            if pending:
                pending[1](" ".join(args[1:]) or "rejected")
        elif cmd == "/kick" and args:
            self.host.kick(args[0], " ".join(args[1:]) or "kicked")
        elif cmd == "/ban" and args:
            self.host.ban(args[0])
        elif cmd == "/unban" and args:
            self.host.unban(args[0])
        elif cmd == "/msg" and len(args) >= 2:
            self.host.send_private(args[0], " ".join(args[1:]))
        elif cmd == "/word" and len(args) == 2 and args[0] in ("add", "remove"):
            if args[0] == "add":
                self.host.add_banned_word(args[1])
            else:
                self.host.remove_banned_word(args[1])
        elif cmd == "/members":
            for member in self.host.members:
                print(f"  {member.nickname} ({member.id})")
        else:
            print(f"! unknown command: {line}")
        return True


class ClientConsole:
    def __init__(self, client: Client) -> None:
        self.client = client
        client.subscribe(GroupEvent.JOIN_APPROVED, lambda i, n: print(f"* joined as {n}"))
        client.subscribe(GroupEvent.JOIN_REJECTED, lambda reason: print(f"* rejected: {reason}"))
        client.subscribe(GroupEvent.MESSAGE, lambda text, i: print(f"<{i}> {text}"))
        client.subscribe(GroupEvent.PRIVATE_MESSAGE, lambda text, i: print(f"[{i}] {text}"))
        client.subscribe(
            GroupEvent.MEMBER_LIST,
            lambda members: print("* members: " + ", ".join(m.nickname for m in members)),
        )
        client.subscribe(GroupEvent.KICKED, lambda reason: print(f"* kicked: {reason}"))
        client.subscribe(GroupEvent.SHUTDOWN, lambda: print("* group shut down"))
        client.subscribe(GroupEvent.ERROR, lambda err: print(f"! {err}"))

    def handle_line(self, line: str) -> bool:
        line = line.strip()
        if not line:
            return True
        if line == QUIT:
            self.client.disconnect()
            return False
        if line.startswith("/msg "):
            parts = line.split(maxsplit=2)
            if len(parts) == 3:
                self.client.send_private(parts[1], parts[2])
                return True
        if line.startswith("/nick "):
            self.client.change_nickname(line[len("/nick ") :].strip())
            return True
        self.client.send(line)
        return True


class AdminConsole:
    def __init__(self, admin: Admin) -> None:
        self.admin = admin
        admin.subscribe(GroupEvent.ADMIN_AUTH_SUCCESS, lambda: print("* authenticated"))
        admin.subscribe(GroupEvent.ADMIN_AUTH_FAILED, lambda reason: print(f"* auth failed: {reason}"))
        admin.subscribe(
            GroupEvent.MEMBER_LIST,
            lambda members: print("* members: " + ", ".join(f"{m.nickname} ({m.id})" for m in members)),
        )
        admin.subscribe(GroupEvent.ERROR, lambda err: print(f"! {err}"))

    def handle_line(self, line: str) -> bool:
        cmd, *args = line.split() or [""]
        if not cmd:
            return True
        if cmd == QUIT:
            self.admin.disconnect()
            return False
        if cmd == "/kick" and args:
            self.admin.kick_client(args[0], " ".join(args[1:]) or "kicked")
        elif cmd == "/ban" and args:
            self.admin.ban_client(args[0])
        elif cmd == "/unban" and args:
            self.admin.unban_client(args[0])
        elif cmd == "/word" and len(args) == 2 and args[0] in ("add", "remove"):
            if args[0] == "add":
                self.admin.add_banned_word(args[1])
            else:
                self.admin.remove_banned_word(args[1])
        elif cmd == "/shutdown":
            self.admin.shutdown_group()
        else:
            print(f"! unknown command: {line}")
        return True


def run_console(handle_line: Callable[[str], bool], call: Callable[..., Any]) -> None:
    """Feed stdin lines to handle_line until it returns False or input ends.

    Invalid input (empty text, a bad nickname or banned word) is reported
    and the console keeps reading.
    """
    for line in sys.stdin:
        try:
            keep_going = call(handle_line, line)
        except (TypeError, ValueError) as e:
            print(f"! {e}")
            continue
        if not keep_going:
            break


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        from .rns_transport import RNSPeer, init_reticulum
        from .utils import load_or_create_identity

        config = load_config()
        try:
            fill_from_config(args, config)
        except ValueError as e:
            parser.error(str(e))
        init_reticulum(config.get("configdir"))
        identity = load_or_create_identity(config["identity_path"])
        peer = RNSPeer(identity, config["dest_name"], announce=bool(config.get("announce", True)))

        handle_line: Callable[[str], bool]
        if args.command == "host":
            host = Host(
                peer,
                admin_secret=args.secret if args.secret is not None else config["admin_secret"],
                banned_words=[*config["banned_words"], *args.banned_word],
                banned_peers=config["banned_peers"],
            )
            console = HostConsole(host, auto_approve=args.auto_approve or bool(config["auto_approve"]))
            print(f"Group host running. Share this id: {host.id}")
            handle_line = console.handle_line
        elif args.command == "join":
            client = Client(peer)
            handle_line = ClientConsole(client).handle_line
            client.join(args.host_id, args.nickname)
        else:
            admin = Admin(peer, args.secret)
            handle_line = AdminConsole(admin).handle_line
            admin.connect(args.host_id)

        run_console(handle_line, peer.call)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
