import asyncio, argparse
from aquasens_monitor.monitor import run

def main():
    ap = argparse.ArgumentParser(description="AquaSens water probe monitor")
    ap.add_argument("--config", default=None, help="YAML config; defaults apply when omitted")
    ap.add_argument("--connect", action="store_true", help="connect to a probe at startup instead of demo only")
    args = ap.parse_args()
    asyncio.run(run(args.config, connect=args.connect))

if __name__ == "__main__":
    main()
