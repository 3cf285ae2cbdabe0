#!/usr/bin/env python3
import argparse
import asyncio

from aquasens_monitor.ble.bleak_link import BleakLinkProvider
from aquasens_monitor.ble.link import NAME_PREFIXES, matches_prefix

async def main():
    ap = argparse.ArgumentParser(description="List nearby water probes (ESP32*/AquaSens* advertisers)")
    ap.add_argument("--adapter", default=None)
    ap.add_argument("--scan", type=float, default=6.0)
    ap.add_argument("--all", action="store_true", help="show every advertiser, not only probes")
    args = ap.parse_args()

    provider = BleakLinkProvider(args.adapter, scan_timeout_s=args.scan)
    if not provider.available():
        raise SystemExit("[err] no Bluetooth adapter available")

    print(f"[i] Scanning ~{int(args.scan)} s…\n")
    rows = await provider.scan()
    hits = [p for p in rows if matches_prefix(p.name, NAME_PREFIXES)]
    show = rows if args.all else hits

    if not hits:
        print("[!] No probe found. Nearby candidates:\n")
        show = rows

    for p in show[:20]:
        rssi = p.rssi if p.rssi is not None else -999
        mark = "*" if p in hits else " "
        print(f" {mark} RSSI {rssi:>4} | {p.name or '(no name)'} [{p.address}]")

if __name__ == "__main__":
    asyncio.run(main())
