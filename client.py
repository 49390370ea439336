
import argparse
import socket


class AccountClient:
    """Blocking client for the account cache line protocol, one reply line per command."""
    def __init__(self, host: str = "127.0.0.1", port: int = 9000):
        self.sock = socket.create_connection((host, port))
        self.replies = self.sock.makefile("rb")

    def call(self, cmd: str) -> str:
        self.sock.sendall(cmd.encode() + b"\n")
        return self.replies.readline().decode(errors="ignore").rstrip("\n")

    def next_update(self) -> str:
        return self.replies.readline().decode(errors="ignore").rstrip("\n")

    def close(self):
        self.replies.close()
        self.sock.close()


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=9000)
    args = ap.parse_args()

    watcher = AccountClient(args.host, args.port)
    writer = AccountClient(args.host, args.port)
    print(watcher.call("WATCH"))

    # demo: five accounts against the default top capacity of 3
    for account_id, balance in [(1, 100), (2, 200), (3, 300), (4, 400), (5, 500)]:
        print(writer.call(f"PUT {account_id} {balance}"), "|", watcher.next_update())
    for cmd in ("GET 2", "GET 42", "TOP 3", "HITS", "STATS"):
        print(cmd, "->", writer.call(cmd))

    writer.close()
    watcher.close()
