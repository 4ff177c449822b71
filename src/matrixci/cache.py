# cache.py
from __future__ import annotations

import hashlib
import io
import json
import tarfile
import threading
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .model import CacheSpec, Job, Leg

# ---------------------------------------------------------------------
# Dependency cache, one entry per (job, environment, fingerprint):
#
#   key = hash(
#       job name,
#       environment label (runs-on),
#       toolchain identifier,
#       run config env,
#       cached paths,
#       contents of the lock/manifest files (CacheSpec.key_files)
#   )
#
# Layout:
#   root/<job>/<environment>/<key>.tar.gz
#   root/<job>/<environment>/<key>.manifest.json
#
# Restore is best-effort: anything that goes wrong is a miss.
# Restore and save hold a lock per cached path, so legs sharing a host
# never extract into or archive the same directory at the same time.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".matrixci/cache"
KEY_FILE_EXCLUDES = [
    ".git/*",
    ".matrixci/*",
    "target/*",
]
FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict = field(default_factory=dict)
    partial: bool = False

    @property
    def state(self) -> str:
        if not self.hit:
            return "miss"
        return "partial" if self.partial else "hit"


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _relpath(p: Path, root: Path) -> str:
    return p.resolve().relative_to(root.resolve()).as_posix()


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _excluded(rel: str) -> bool:
    return any(fnmatch(rel, g) for g in KEY_FILE_EXCLUDES)


def hash_key_files(repo_root: Path, patterns: Iterable[str]) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Fingerprint the dependency-lock state: relative path + content digest of
    every file matched by the patterns, sorted by path.
    """
    found: Dict[str, str] = {}
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        for p in sorted(repo_root.glob(pat)):
            if not p.is_file():
                continue
            rel = _relpath(p, repo_root)
            if _excluded(rel) or rel in found:
                continue
            found[rel] = _hash_file_contents(p)

    files = sorted(found.items())
    return _sha256_str(_json_dumps_stable(files)), files


def _expand(path: str, repo_root: Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else (repo_root / p)


_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


@contextmanager
def _locked(paths: Iterable[Path]):
    """Hold one process-wide lock per resolved path, acquired in sorted order."""
    keys = sorted({str(p.resolve()) for p in paths})
    with _path_locks_guard:
        locks = [_path_locks.setdefault(k, threading.Lock()) for k in keys]
    with ExitStack() as stack:
        for lock in locks:
            stack.enter_context(lock)
        yield


def _read_manifest(path: Path) -> Dict:
    """
    Load a stored manifest.

    Raises:
        ValueError: not a manifest object, or malformed entries
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"manifest is {type(data).__name__}, expected object")
    entries = data.get("entries", [])
    if not isinstance(entries, list) or not all(
        isinstance(e, list) and len(e) == 2 and all(isinstance(x, str) for x in e) for e in entries
    ):
        raise ValueError("manifest entries must be [path, kind] string pairs")
    return data


def _prefix(job: Job, leg: Leg) -> str:
    spec = job.cache
    return _sha256_str(_json_dumps_stable({
        "v": FORMAT_VERSION,
        "job": job.name,
        "environment": leg.environment,
        "toolchain": job.toolchain.identifier if job.toolchain else None,
        "paths": list(spec.paths) if spec else [],
    }))


def compute_cache_key(
    job: Job,
    leg: Leg,
    *,
    repo_root: str | Path = ".",
    run_env: Optional[Mapping[str, str]] = None,
) -> Tuple[str, Dict]:
    """
    Returns (cache_key, manifest) where manifest is stored next to the
    artifact for explainability and prefix restores.
    """
    root = Path(repo_root).resolve()
    spec = job.cache or CacheSpec(paths=())
    lock_hash, lock_files = hash_key_files(root, spec.key_files)

    payload = {
        "v": FORMAT_VERSION,
        "job": job.name,
        "environment": leg.environment,
        "toolchain": job.toolchain.identifier if job.toolchain else None,
        "env": dict(sorted((run_env or {}).items())),
        "paths": list(spec.paths),
        "lock_hash": lock_hash,
    }
    key = _sha256_str(_json_dumps_stable(payload))
    manifest = {
        "key": key,
        "prefix": _prefix(job, leg),
        "payload": payload,
        "lock_files": lock_files,
        "generated_at_unix": int(time.time()),
    }
    return key, manifest


class CacheStore:
    """File-based store for dependency cache entries."""

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _entry_dir(self, job_name: str, environment: str) -> Path:
        d = self.root / job_name / environment
        d.mkdir(parents=True, exist_ok=True)
        return d

    def artifact_path(self, job_name: str, environment: str, key: str) -> Path:
        return self._entry_dir(job_name, environment) / f"{key}.tar.gz"

    def manifest_path(self, job_name: str, environment: str, key: str) -> Path:
        return self._entry_dir(job_name, environment) / f"{key}.manifest.json"

    def restore(
        self,
        job: Job,
        leg: Leg,
        *,
        repo_root: str | Path = ".",
        run_env: Optional[Mapping[str, str]] = None,
    ) -> CacheHit:
        """
        Restore cached paths for this leg. Exact key first, then the newest
        entry with the same prefix (if CacheSpec.restore_prefix), else a miss.
        """
        spec = job.cache
        if spec is None or not spec.enabled:
            return CacheHit(hit=False, key="", reason="cache disabled for job")
        if not spec.paths:
            return CacheHit(hit=False, key="", reason="no cache paths specified")

        root = Path(repo_root).resolve()
        key, manifest = compute_cache_key(job, leg, repo_root=root, run_env=run_env)

        candidates: List[Tuple[str, bool]] = [(key, False)]
        if spec.restore_prefix:
            fallback = self._newest_with_prefix(job.name, leg.environment, manifest["prefix"], exclude=key)
            if fallback:
                candidates.append((fallback, True))

        reasons = []
        with _locked(_expand(p, root) for p in spec.paths):
            for candidate, partial in candidates:
                art = self.artifact_path(job.name, leg.environment, candidate)
                man = self.manifest_path(job.name, leg.environment, candidate)
                if not art.exists() or not man.exists():
                    reasons.append("cache miss")
                    continue
                try:
                    stored = _read_manifest(man)
                    self._extract(art, stored, root)
                except Exception as e:
                    # corrupted/partial entry: treat as miss
                    reasons.append(f"entry {candidate[:12]} unreadable: {e}")
                    continue
                reason = "cache hit: restored artifact" if not partial else f"partial hit: restored {candidate[:12]}"
                return CacheHit(hit=True, key=key, reason=reason, manifest=stored, partial=partial)

        return CacheHit(hit=False, key=key, reason="; ".join(reasons) or "cache miss", manifest=manifest)

    def _newest_with_prefix(self, job_name: str, environment: str, prefix: str, *, exclude: str) -> Optional[str]:
        d = self._entry_dir(job_name, environment)
        mans = sorted(d.glob("*.manifest.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        for m in mans:
            try:
                data = _read_manifest(m)
            except Exception:
                continue
            candidate = data.get("key")
            if data.get("prefix") == prefix and isinstance(candidate, str) and candidate != exclude:
                return candidate
        return None

    def _extract(self, art: Path, stored: Dict, repo_root: Path) -> None:
        targets = [(_expand(p, repo_root), kind) for p, kind in stored["entries"]]
        with tarfile.open(str(art), mode="r:gz") as tar:
            for member in tar.getmembers():
                idx, _, rel = member.name.partition("/")
                if not rel:
                    continue
                target, kind = targets[int(idx)]
                dest = target if kind == "dir" else target.parent
                dest.mkdir(parents=True, exist_ok=True)
                member.name = rel
                tar.extract(member, path=str(dest), filter="data")

    def save(
        self,
        job: Job,
        leg: Leg,
        *,
        repo_root: str | Path = ".",
        run_env: Optional[Mapping[str, str]] = None,
    ) -> Tuple[str, Dict]:
        """
        Save the job's cache paths for this leg. Returns (key, manifest).
        Missing paths are skipped; the artifact is renamed into place only
        once fully written.
        """
        root = Path(repo_root).resolve()
        key, manifest = compute_cache_key(job, leg, repo_root=root, run_env=run_env)
        spec = job.cache
        if spec is None or not spec.enabled or not spec.paths:
            return key, manifest

        art = self.artifact_path(job.name, leg.environment, key)
        man = self.manifest_path(job.name, leg.environment, key)
        tmp = art.with_suffix(".tmp")
        with _locked(_expand(p, root) for p in spec.paths):
            self._archive(tmp, art, man, spec, root, manifest)
        return key, manifest

    def _archive(self, tmp: Path, art: Path, man: Path, spec: CacheSpec, root: Path, manifest: Dict) -> None:
        entries = []
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for idx, entry in enumerate(spec.paths):
                    src = _expand(entry, root)
                    if src.is_dir():
                        entries.append([entry, "dir"])
                        for f in _iter_files_under(src):
                            tar.add(str(f), arcname=f"{idx}/{f.relative_to(src).as_posix()}", recursive=False)
                    elif src.is_file():
                        entries.append([entry, "file"])
                        tar.add(str(src), arcname=f"{idx}/{src.name}", recursive=False)
                    else:
                        entries.append([entry, "missing"])

                manifest["entries"] = entries
                payload = json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8")
                info = tarfile.TarInfo(name=".matrixci_manifest.json")
                info.size = len(payload)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(payload))

            tmp.replace(art)
            man.write_text(json.dumps(manifest, sort_keys=True, indent=2), encoding="utf-8")
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def prune(self, job_name: str, environment: str, keep: int = 3) -> None:
        """Keep only the newest N artifacts for a job/environment (by mtime)."""
        d = self._entry_dir(job_name, environment)
        tars = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        for p in tars[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{key}.manifest.json").unlink(missing_ok=True)
