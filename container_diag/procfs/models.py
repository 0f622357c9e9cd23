"""Typed process records built from /proc descriptors.

The mapping from /proc/<pid>/status keys to ProcessRecord fields lives in
STATUS_FIELDS so the parser stays declarative: adding a field means adding a
row, not another branch of text scanning.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

# Bound on the rendered command line length
CMDLINE_MAX_LENGTH = 200

# Rendered for memory fields the kernel did not report (kernel threads,
# zombies); zero would claim a measurement
UNMEASURED = "-"


class ProcessState(str, Enum):
    """Canonical process run states."""

    RUNNING = "Running"
    SLEEPING = "Sleeping"
    DISK_SLEEP = "DiskSleep"
    ZOMBIE = "Zombie"
    STOPPED = "Stopped"
    OTHER = "Other"

    @classmethod
    def from_code(cls, code: str) -> "ProcessState":
        """Map a kernel state code (e.g. 'S (sleeping)') to a canonical state."""
        letter = code.strip()[:1]
        return _STATE_CODES.get(letter, cls.OTHER)


_STATE_CODES: Dict[str, ProcessState] = {
    "R": ProcessState.RUNNING,
    "S": ProcessState.SLEEPING,
    "D": ProcessState.DISK_SLEEP,
    "Z": ProcessState.ZOMBIE,
    "T": ProcessState.STOPPED,
    "t": ProcessState.STOPPED,
}


def _first_int(value: str) -> int:
    # "1234 kB" -> 1234
    return int(value.split()[0])


class StatusField(NamedTuple):
    """One row of the status-descriptor mapping table."""

    key: str
    attr: str
    convert: Callable[[str], object]


STATUS_FIELDS: Tuple[StatusField, ...] = (
    StatusField("PPid", "ppid", _first_int),
    StatusField("State", "state", ProcessState.from_code),
    StatusField("VmRSS", "rss_kb", _first_int),
    StatusField("VmSize", "vsz_kb", _first_int),
)

MEMINFO_KEYS: Tuple[str, ...] = (
    "MemTotal",
    "MemFree",
    "MemAvailable",
    "Buffers",
    "Cached",
    "SwapTotal",
    "SwapFree",
)


def parse_status_fields(lines: List[str]) -> Dict[str, object]:
    """Apply STATUS_FIELDS to `Key:\\tvalue` status lines.

    Unknown keys and unparseable values are ignored; absent fields are
    simply missing from the result.
    """
    by_key = {f.key: f for f in STATUS_FIELDS}
    values: Dict[str, object] = {}
    for line in lines:
        key, sep, raw = line.partition(":")
        if not sep:
            continue
        spec = by_key.get(key.strip())
        if spec is None or not raw.strip():
            continue
        try:
            values[spec.attr] = spec.convert(raw)
        except (ValueError, IndexError):
            continue
    return values


def normalize_cmdline(raw: str, name: str = "") -> str:
    """Turn a raw cmdline into its display form.

    Null separators become spaces, the result is truncated to
    CMDLINE_MAX_LENGTH and trailing whitespace dropped. An empty command
    line with a known name is shown as `[name]`.
    """
    cmdline = raw.replace("\0", " ").replace("\n", " ")
    cmdline = cmdline[:CMDLINE_MAX_LENGTH].rstrip()
    if not cmdline and name:
        cmdline = f"[{name}]"
    return cmdline


@dataclass(frozen=True)
class ProcessRecord:
    """A single process observed during one inspection pass."""

    pid: int
    ppid: Optional[int]
    state: ProcessState
    rss_kb: Optional[int]
    vsz_kb: Optional[int]
    name: str
    cmdline: str

    @property
    def rss_display(self) -> str:
        return UNMEASURED if self.rss_kb is None else str(self.rss_kb)

    @property
    def vsz_display(self) -> str:
        return UNMEASURED if self.vsz_kb is None else str(self.vsz_kb)

    def matches(self, needle: str) -> bool:
        """Case-insensitive match against the short name or the command line."""
        needle = needle.lower()
        return needle in self.name.lower() or needle in self.cmdline.lower()


@dataclass
class ProcessSnapshot:
    """All processes of one container at one point in time."""

    records: List[ProcessRecord]
    inspector_pid: Optional[int] = None
    collected_at: str = ""
    memory_summary: List[str] = field(default_factory=list)

    @property
    def pids(self) -> List[int]:
        return [r.pid for r in self.records]

    def find_first(self, needle: str) -> Optional[ProcessRecord]:
        """Lowest-pid record whose name or cmdline contains `needle`."""
        for record in self.records:
            if record.matches(needle):
                return record
        return None
