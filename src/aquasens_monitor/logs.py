from __future__ import annotations
import os, json, time, pathlib, uuid
from typing import Optional, IO


class NdjsonLogger:
    """Append-only NDJSON event log, one file per run, rotated daily.

    Records are dicts with at least `type` and `msg`; the logger adds `hms`,
    `seq`, `schema`, `session_id` and `pid`. With `dual_file` every record is
    also written to a debug file, while the main file only receives records
    that pass the mode filter.
    """
    def __init__(self, directory: str, file_prefix: str, *, dual_file: bool = False, debug_subdir: Optional[str] = None):
        self.dir = pathlib.Path(directory)
        self.dir.mkdir(parents=True, exist_ok=True)
        self.prefix = file_prefix
        self.dual_file = bool(dual_file)
        self.debug_subdir = debug_subdir or "debug"
        self._debug_dir: Optional[pathlib.Path] = None
        self.seq = 0
        self._fh: Optional[IO[str]] = None
        self._rot_day: Optional[str] = None
        self._path: Optional[pathlib.Path] = None
        self._debug_fh: Optional[IO[str]] = None
        self._debug_path: Optional[pathlib.Path] = None
        # 'regular' drops debug records from the main file unless whitelisted;
        # 'verbose' keeps everything.
        self.mode: str = os.getenv("LOG_MODE", "regular")
        wl = os.getenv("LOG_VERBOSE_WHITELIST", "")
        self.verbose_whitelist = set([s.strip() for s in wl.split(",") if s.strip()])
        self.session_id: str = os.getenv("SESSION_ID") or uuid.uuid4().hex[:12]
        self.pid: int = os.getpid()
        self.rotate()

    @property
    def path(self) -> Optional[pathlib.Path]:
        return self._path

    def _close(self):
        for fh in (self._fh, self._debug_fh):
            if fh:
                try:
                    fh.close()
                except OSError:
                    pass
        self._fh = None
        self._debug_fh = None

    def _alias(self, target: pathlib.Path, alias: pathlib.Path):
        # Daily alias (prefix_YYYYMMDD.ndjson) points at the current run's file
        try:
            if alias.exists() or alias.is_symlink():
                alias.unlink()
            try:
                os.link(target, alias)
            except OSError:
                os.symlink(str(target), alias)
        except OSError:
            pass

    def rotate(self):
        self._close()
        stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime())
        day = stamp[:8]
        path = self.dir / f"{self.prefix}_{stamp}.ndjson"
        self._fh = open(path, "a", buffering=1, encoding="utf-8")
        self._path = path
        self._alias(path, self.dir / f"{self.prefix}_{day}.ndjson")
        if self.dual_file:
            self._debug_dir = self.dir / self.debug_subdir
            self._debug_dir.mkdir(parents=True, exist_ok=True)
            dpath = self._debug_dir / f"{self.prefix}_debug_{stamp}.ndjson"
            self._debug_fh = open(dpath, "a", buffering=1, encoding="utf-8")
            self._debug_path = dpath
            self._alias(dpath, self._debug_dir / f"{self.prefix}_debug_{day}.ndjson")
        self._rot_day = day

    def _keep_in_main(self, obj: dict) -> bool:
        if self.mode != "regular":
            return True
        typ = obj.get("type")
        msg = obj.get("msg")
        data = obj.get("data") if isinstance(obj.get("data"), dict) else {}
        # Idle heartbeats (no reading source running) are noise
        if typ == "status" and msg == "alive" and data.get("source") is None:
            return False
        if typ == "debug":
            return bool(msg) and msg in self.verbose_whitelist
        return True

    def _annotate(self, obj: dict):
        # Rejected frames carry raw hex; add the text form for readability
        data = obj.get("data")
        if not isinstance(data, dict):
            return
        raw = data.get("raw")
        if isinstance(raw, str) and raw and "text" not in data:
            try:
                data["text"] = bytes.fromhex(raw).decode("utf-8", errors="replace")
            except ValueError:
                pass

    def write(self, obj: dict):
        keep = self._keep_in_main(obj)
        self._annotate(obj)

        self.seq += 1
        now = time.time()
        msec = int((now % 1.0) * 1000)
        obj.setdefault("hms", time.strftime("%H:%M:%S", time.localtime(now)) + f".{msec:03d}")
        obj.setdefault("seq", self.seq)
        obj.setdefault("schema", "v1")
        obj.setdefault("session_id", self.session_id)
        obj.setdefault("pid", self.pid)
        if time.strftime("%Y%m%d") != self._rot_day:
            self.rotate()

        line = json.dumps(obj) + "\n"
        if self.dual_file and self._debug_fh:
            self._debug_fh.write(line)
        if keep and self._fh:
            self._fh.write(line)

    def close(self):
        self._close()
