r"""
Stand-in client: simulates its id range and prints one latency summary.

The reported average is 10 * (first id), so client processes 1..3 with one
simulated client each report 10, 20 and 30.
"""

import argparse
import time


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--ids", required=True)
    parser.add_argument("--addresses", default="")
    parser.add_argument("--commands_per_client", type=int, default=1)
    parser.add_argument("--malformed", action="store_true", help="also print an unparsable latency line")
    parser.add_argument("--silent", action="store_true", help="print no latency line")
    args, _ = parser.parse_known_args()

    start, end = (int(part) for part in args.ids.split("-"))
    for client_id in range(start, end + 1):
        print(f"client {client_id} started", flush=True)

    for _ in range(args.commands_per_client):
        time.sleep(0.001)

    if args.malformed:
        print("latency: avg=NaN", flush=True)
    if not args.silent:
        avg = 10 * start
        print(f"latency: min={avg - 1} avg={avg} p99={avg + 5} max={avg + 9}", flush=True)
    print("all clients ended", flush=True)


if __name__ == "__main__":
    main()
