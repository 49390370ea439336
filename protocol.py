
import json
import logging
from typing import Optional

from accounts import Account, AccountCache
from notify import Subscription

logger = logging.getLogger(__name__)


class ProtocolHandler:
    """
    Incremental parser; does not call recv() itself. You feed raw bytes via on_data().
    Protocol:
      PUT <id> <balance>\n
      GET <id>\n
      TOP <n>\n
      HITS\n
      STATS\n
      WATCH\n   (then receives UPDATE <id> <balance>\n on every put)
    """
    def __init__(self, accounts: AccountCache, send_func):
        self.accounts = accounts
        self.send = send_func
        self.buf = bytearray()
        self._watch: Optional[Subscription] = None

    def on_data(self, data: bytes):
        self.buf.extend(data)
        while True:
            nl = self._find_newline()
            if nl < 0:
                return
            line = self._consume(nl).decode("utf-8", errors="replace").strip()
            self._consume(1)  # the '\n'
            if not line:
                continue
            self._handle_line(line)

    def close(self):
        if self._watch is not None:
            self._watch.cancel()
            self._watch = None

    def _handle_line(self, line: str):
        parts = line.split()
        cmd = parts[0].upper()

        if cmd == "PUT" and len(parts) == 3:
            try:
                account = Account(int(parts[1]), int(parts[2]))
            except ValueError:
                self.send(b"ERR invalid PUT args\n"); return
            self.accounts.put_account(account)
            self.send(b"OK\n")
            return

        if cmd == "GET" and len(parts) == 2:
            try:
                account_id = int(parts[1])
            except ValueError:
                self.send(b"ERR invalid GET args\n"); return
            account = self.accounts.get_account_by_id(account_id)
            if account is None:
                self.send(b"NOT_FOUND\n")
            else:
                self.send(f"ACCOUNT {account.id} {account.balance}\n".encode())
            return

        if cmd == "TOP" and len(parts) == 2:
            try:
                n = int(parts[1])
            except ValueError:
                self.send(b"ERR invalid TOP args\n"); return
            try:
                top = self.accounts.get_top_accounts_by_balance(n)
            except ValueError as exc:
                self.send(f"ERR {exc}\n".encode()); return
            body = " ".join(f"{a.id}:{a.balance}" for a in top)
            self.send(f"TOP {body}\n".encode() if body else b"TOP\n")
            return

        if cmd == "HITS" and len(parts) == 1:
            self.send(f"HITS {self.accounts.get_account_by_id_hit_count()}\n".encode())
            return

        if cmd == "STATS" and len(parts) == 1:
            s = json.dumps(self.accounts.stats(), separators=(",", ":"))
            self.send(f"STATS {s}\n".encode())
            return

        if cmd == "WATCH" and len(parts) == 1:
            if self._watch is None:
                self._watch = self.accounts.subscribe_for_account_updates(self._push_update)
                logger.debug("protocol.watch_started")
            self.send(b"WATCHING\n")
            return

        self.send(b"ERR unknown or invalid command\n")

    def _push_update(self, account: Account):
        self.send(f"UPDATE {account.id} {account.balance}\n".encode())

    # --- buffer helpers ---
    def _find_newline(self) -> int:
        try:
            return self.buf.index(0x0A)  # '\n'
        except ValueError:
            return -1

    def _consume(self, n: int) -> bytes:
        out = bytes(self.buf[:n])
        del self.buf[:n]
        return out
