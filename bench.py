
import argparse
import socket
import threading
import time


def connect(host: str, port: int):
    s = socket.create_connection((host, port))
    s.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return s, s.makefile("rb")


def timed(n: int, host: str, port: int, make_cmd):
    """Send n request/reply commands on one connection; returns (ops/s, seconds)."""
    s, replies = connect(host, port)
    with s, replies:
        start = time.time()
        for i in range(n):
            s.sendall(make_cmd(i).encode())
            replies.readline()
        elapsed = time.time() - start
    return n / elapsed, elapsed


def bench_watch(n: int, host: str, port: int):
    """Time n PUTs while a second connection WATCHes; returns (updates seen, seconds)."""
    w, updates = connect(host, port)
    w.sendall(b"WATCH\n")
    updates.readline()  # "WATCHING\n"
    seen = 0

    def drain():
        nonlocal seen
        while seen < n and updates.readline().startswith(b"UPDATE "):
            seen += 1

    reader = threading.Thread(target=drain, daemon=True)
    reader.start()
    start = time.time()
    timed(n, host, port, lambda i: f"PUT {i} {i}\n")
    reader.join(timeout=10)
    elapsed = time.time() - start
    updates.close()
    w.close()
    return seen, elapsed


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--n", type=int, default=10000)
    ap.add_argument("--top", type=int, default=3, help="n for TOP queries (<= server top capacity)")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=9000)
    args = ap.parse_args()

    runs = [
        ("PUT", lambda i: f"PUT {i} {i * 10}\n"),
        ("GET", lambda i: f"GET {i}\n"),
        ("TOP", lambda i: f"TOP {args.top}\n"),
    ]
    for name, make_cmd in runs:
        rps, t = timed(args.n, args.host, args.port, make_cmd)
        print(f"{name}: {args.n} ops in {t:.2f}s -> {rps:.0f} ops/s")

    seen, t = bench_watch(args.n, args.host, args.port)
    print(f"WATCH: {seen}/{args.n} updates delivered in {t:.2f}s")
