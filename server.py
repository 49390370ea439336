
import argparse
import logging
import socket
import threading

from accounts import AccountCache
from protocol import ProtocolHandler

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def handle_client(accounts: AccountCache, conn: socket.socket, addr):
    conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    send_lock = threading.Lock()  # watchers push from other connections' threads

    def send(data: bytes):
        try:
            with send_lock:
                conn.sendall(data)
        except OSError:
            logger.debug("server.send_failed", extra={"peer": str(addr)})

    handler = ProtocolHandler(accounts, send)
    try:
        with conn:
            while True:
                data = conn.recv(65536)
                if not data:
                    break
                handler.on_data(data)
    except OSError:
        # drop this connection; server keeps running
        logger.info("server.connection_dropped", extra={"peer": str(addr)})
    finally:
        handler.close()


def serve(host: str, port: int, capacity: int, top_capacity: int):
    accounts = AccountCache(capacity, top_capacity)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((host, port))
        s.listen(512)
        logger.info(
            "server.listening",
            extra={"host": host, "port": port, "capacity": capacity, "top_capacity": top_capacity},
        )
        while True:
            conn, addr = s.accept()
            t = threading.Thread(target=handle_client, args=(accounts, conn, addr), daemon=True)
            t.start()


if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default="0.0.0.0")
    ap.add_argument("--port", type=int, default=9000)
    ap.add_argument("--capacity", type=int, default=1024)
    ap.add_argument("--top-capacity", type=int, default=3)
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args()
    setup_logging(args.log_level)
    serve(args.host, args.port, args.capacity, args.top_capacity)
