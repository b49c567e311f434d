"""
Driver device simulator.

Walks a vehicle along a straight line and reports each position to a
running server over the REST fallback endpoint.

Usage:
    python scripts/simulate_device.py --token <driver jwt> --vehicle 1
"""

import argparse
import time
from datetime import datetime, timezone

import httpx

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"


def wait_for_server(client: httpx.Client, retries: int = 10, delay: float = 2) -> bool:
    print(f"Waiting for server at {client.base_url}/health...")
    for _ in range(retries):
        try:
            if client.get("/health").status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server not reachable.")
    return False


def run(args) -> int:
    headers = {"Authorization": f"Bearer {args.token}"}
    with httpx.Client(base_url=args.base_url, headers=headers, timeout=10) as client:
        if not wait_for_server(client):
            return 1

        for step in range(args.steps):
            fraction = step / max(args.steps - 1, 1)
            payload = {
                "vehicleId": args.vehicle,
                "latitude": args.start_lat + (args.end_lat - args.start_lat) * fraction,
                "longitude": args.start_lng + (args.end_lng - args.start_lng) * fraction,
                "speed": args.speed,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            if args.trip:
                payload["tripId"] = args.trip

            resp = client.post(f"{API_PREFIX}/location/update", json=payload)
            if resp.status_code == 200:
                ack = resp.json()["data"]
                print(f"📍 {step + 1}/{args.steps} -> {ack['scopeKey']} ({ack['delivered']} viewers)")
            elif resp.status_code == 503:
                print(f"⚠️ Store unavailable, retrying in {args.interval}s")
            else:
                print(f"❌ {resp.status_code}: {resp.text}")
                return 1
            time.sleep(args.interval)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Report simulated GPS samples for one vehicle")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--token", required=True, help="DRIVER bearer token")
    parser.add_argument("--vehicle", type=int, required=True)
    parser.add_argument("--trip", type=int, default=None)
    parser.add_argument("--steps", type=int, default=20)
    parser.add_argument("--interval", type=float, default=2.0)
    parser.add_argument("--speed", type=float, default=40.0)
    parser.add_argument("--start-lat", type=float, default=12.9716)
    parser.add_argument("--start-lng", type=float, default=77.5946)
    parser.add_argument("--end-lat", type=float, default=12.9352)
    parser.add_argument("--end-lng", type=float, default=77.6245)
    raise SystemExit(run(parser.parse_args()))


if __name__ == "__main__":
    main()
