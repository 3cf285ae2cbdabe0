from __future__ import annotations
import yaml
from dataclasses import dataclass, field
from typing import Optional, List
from .ble.link import CHARACTERISTIC_UUID, NAME_PREFIXES, SERVICE_UUID


@dataclass
class LinkCfg:
    adapter: Optional[str] = "hci0"
    # Only peripherals advertising one of these name prefixes are offered
    name_prefixes: List[str] = field(default_factory=lambda: list(NAME_PREFIXES))
    # Preferred address or name fragment; strongest signal wins when unset
    target: Optional[str] = None
    service_uuid: str = SERVICE_UUID
    characteristic_uuid: str = CHARACTERISTIC_UUID
    scan_timeout_sec: float = 8.0
    connect_timeout_sec: float = 20.0


@dataclass
class DemoCfg:
    enabled: bool = True
    period_sec: float = 5.0
    seed: Optional[int] = None
    # Connecting switches demo mode off; set true to switch it back on
    # automatically once the link goes away
    resume_on_disconnect: bool = False


@dataclass
class LoggingCfg:
    dir: str = "./logs"
    file_prefix: str = "aquasens"
    # 'regular' keeps debug records out of the main file unless whitelisted
    mode: str = "regular"
    # Example: ["frame_rejected"]
    verbose_whitelist: Optional[List[str]] = None
    dual_file: bool = True
    debug_subdir: Optional[str] = "debug"
    # Heartbeat interval for the status task; 0 disables it
    status_every_sec: float = 30.0


@dataclass
class AppCfg:
    link: LinkCfg = field(default_factory=LinkCfg)
    demo: DemoCfg = field(default_factory=DemoCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


def _as_float(d: dict, key: str, default: float) -> float:
    try:
        return float(d.get(key, default))
    except (TypeError, ValueError):
        return default


def _as_int(d: dict, key: str, default: Optional[int]) -> Optional[int]:
    v = d.get(key, default)
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def load_config(path: Optional[str] = None) -> AppCfg:
    """Load YAML config; a missing path gives all defaults."""
    if not path:
        return AppCfg()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    # Numeric fields are coerced so YAML/ENV strings don't leak through
    link_raw = dict(raw.get("link") or {})
    for key, default in (("scan_timeout_sec", LinkCfg.scan_timeout_sec),
                         ("connect_timeout_sec", LinkCfg.connect_timeout_sec)):
        link_raw[key] = _as_float(link_raw, key, default)
    if "name_prefixes" in link_raw:
        link_raw["name_prefixes"] = [str(p) for p in link_raw["name_prefixes"] or []]
    link = LinkCfg(**link_raw)

    demo_raw = dict(raw.get("demo") or {})
    demo_raw["period_sec"] = _as_float(demo_raw, "period_sec", DemoCfg.period_sec)
    demo_raw["seed"] = _as_int(demo_raw, "seed", None)
    demo = DemoCfg(**demo_raw)

    log_raw = dict(raw.get("logging") or {})
    log_raw["status_every_sec"] = _as_float(log_raw, "status_every_sec", LoggingCfg.status_every_sec)
    log = LoggingCfg(**log_raw)
    return AppCfg(link=link, demo=demo, logging=log)
