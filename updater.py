# updater.py
"""
Builds the published blocklist files from the upstream government sources.

For every source: download, drop blanks and # comments, dedupe, sort, write
<file>. Outputs larger than MAX_FILE_SIZE are cut into <stem>_partNNN.txt
pieces and the unsplit file is removed. A failing source is logged and the
others still run; the exit status is 1 if any source failed.

Env:
  UPDATER_OUTPUT_DIR     where files are written (default: cwd)
  UPDATER_INSECURE_TLS   "true" to skip certificate verification
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

import requests

logger = logging.getLogger(__name__)


class ListSource(NamedTuple):
    name: str
    url: str
    file: str


LISTS = [
    ListSource("domains", "https://trustpositif.komdigi.go.id/assets/db/domains", "domains.txt"),
    ListSource("ip", "https://trustpositif.komdigi.go.id/assets/db/ipaddress_isp", "ipaddress_isp.txt"),
    ListSource("judi", "https://trustpositif.komdigi.go.id/assets/db/situs_judi", "situs_judi.txt"),
]

MAX_FILE_SIZE = 45 * 1024 * 1024   # stays under GitHub's per-file limit
DOWNLOAD_TIMEOUT = 30
OUTPUT_DIR = os.getenv("UPDATER_OUTPUT_DIR", ".")
VERIFY_TLS = os.getenv("UPDATER_INSECURE_TLS", "false").lower() != "true"


@dataclass
class SourceResult:
    name: str
    ok: bool
    entries: int = 0
    files: List[str] = field(default_factory=list)
    error: Optional[str] = None


def download(url: str, verify: bool = True) -> str:
    logger.info("Downloading from %s...", url)
    r = requests.get(url, timeout=DOWNLOAD_TIMEOUT, verify=verify)
    if r.status_code != 200:
        raise RuntimeError(f"Failed to fetch {url}: {r.status_code}")
    return r.content.decode("utf-8", errors="replace")


def normalize_lines(content: str) -> List[str]:
    out = set()
    for ln in content.split("\n"):
        ln = ln.strip()
        if not ln or ln.startswith("#"):
            continue
        out.add(ln)
    return sorted(out)


def _write_lines(path: str, lines: List[str]):
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write("\n".join(lines))


def split_file(lines: List[str], path: str, chunk_size: int = MAX_FILE_SIZE) -> List[str]:
    """Write `lines` as numbered parts next to `path`, then delete `path`."""
    directory = os.path.dirname(path)
    stem = os.path.splitext(os.path.basename(path))[0]
    parts: List[str] = []
    chunk: List[str] = []
    size = 0

    def flush():
        part = os.path.join(directory, f"{stem}_part{len(parts) + 1:03d}.txt")
        _write_lines(part, chunk)
        logger.info("Saved %s", part)
        parts.append(part)

    for ln in lines:
        ln_size = len((ln + "\n").encode("utf-8"))
        if chunk and size + ln_size > chunk_size:
            flush()
            chunk = []
            size = 0
        chunk.append(ln)
        size += ln_size
    if chunk:
        flush()

    os.remove(path)
    logger.info("Removed original large file %s", path)
    return parts


def process_list(source: ListSource, output_dir: str = OUTPUT_DIR, verify: bool = VERIFY_TLS) -> SourceResult:
    logger.info("Processing %s...", source.name)
    try:
        content = download(source.url, verify=verify)
        logger.info("[%s] Downloaded length: %d", source.name, len(content))

        lines = normalize_lines(content)
        logger.info("[%s] Total unique entries: %d", source.name, len(lines))

        path = os.path.join(output_dir, source.file)
        _write_lines(path, lines)
        logger.info("[%s] Written to %s", source.name, path)

        files = [path]
        size = os.path.getsize(path)
        if size > MAX_FILE_SIZE:
            logger.info("[%s] File size %d exceeds limit. Splitting...", source.name, size)
            files = split_file(lines, path, MAX_FILE_SIZE)
        return SourceResult(source.name, True, entries=len(lines), files=files)
    except (requests.RequestException, RuntimeError, OSError) as e:
        logger.error("[%s] Error: %s", source.name, e)
        return SourceResult(source.name, False, error=str(e))


def main(sources: List[ListSource] = LISTS, output_dir: str = OUTPUT_DIR, verify: bool = VERIFY_TLS) -> int:
    logger.info("Starting blocklist update...")
    if not verify:
        logger.warning("TLS certificate verification is disabled")
    os.makedirs(output_dir, exist_ok=True)
    results = [process_list(s, output_dir, verify) for s in sources]
    failed = [r.name for r in results if not r.ok]
    if failed:
        logger.warning("Finished with failures: %s", ", ".join(failed))
        return 1
    logger.info("All lists processed.")
    return 0


def run():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    sys.exit(main())


if __name__ == "__main__":
    run()
