"""pf + dummynet backend (macOS).

Pipe definitions go to ``dnctl``; filter and dummynet rules are loaded into
the owned anchor with ``pfctl -a <anchor> -f -``, which replaces the anchor
contents in one step and never touches the main ruleset. Byte counters are
read back from the verbose rule listings, attributed by rule label.
"""

from __future__ import annotations

import logging
import re
import subprocess

from bwctl.errors import AdapterUnavailable, ApplyError, ApplyFailure
from bwctl.firewall.base import Counters
from bwctl.rules.models import Direction
from bwctl.shaping.compiler import is_owned_pipe, rule_label, split_config

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r'label "([^"]+)"')
_BYTES_RE = re.compile(r"Bytes:\s*(\d+)")

# 10001:   500.000 KByte/s    0 ms   50 sl. 0 queues (1 buckets) droptail
_PIPE_LIST_RE = re.compile(
    r"^(?P<number>\d+):\s+(?:(?P<unlimited>unlimited)|"
    r"(?P<value>[\d.]+)\s*(?P<prefix>[KM]?)(?P<unit>bit|Byte)/s)"
)

_PREFIX = {"": 1, "K": 1000, "M": 1000 * 1000}


class PfAdapter:
    """Applies compiled configuration to a pf anchor.

    Holds no firewall state between calls; every read goes to pfctl.
    """

    def __init__(
        self,
        anchor: str = "com.apple/bwctl",
        timeout: float = 10.0,
        pfctl: str = "pfctl",
        dnctl: str = "dnctl",
    ) -> None:
        self._anchor = anchor
        self._timeout = timeout
        self._pfctl = pfctl
        self._dnctl = dnctl

    @property
    def anchor(self) -> str:
        return self._anchor

    def apply(self, config_text: str) -> None:
        """Load ``config_text`` so that either all of it takes effect or none.

        The ruleset is checked with ``pfctl -n`` before any pipe is touched.
        If the real load is still rejected, the pipes are put back the way
        ``dnctl list`` reported them. Pipes in bwctl's ranges that the new
        text no longer defines are deleted once the anchor stops using them.
        """
        pipe_lines, rule_lines = split_config(config_text)
        ruleset = "".join(f"{line}\n" for line in rule_lines)
        load_cmd = [self._pfctl, "-a", self._anchor, "-f", "-"]

        self._run([self._pfctl, "-n", "-a", self._anchor, "-f", "-"], input_text=ruleset)

        previous = self.kernel_pipes()
        wanted = {int(line.split()[1]): line for line in pipe_lines}

        configured: list[int] = []
        try:
            # Pipes must exist before the rules that send traffic into them
            for number, line in wanted.items():
                self._run([self._dnctl, *line.split()])
                configured.append(number)
            self._run(load_cmd, input_text=ruleset)
        except ApplyError:
            self._restore_pipes(configured, previous)
            raise

        logger.info(
            "Loaded %d pipe(s) and %d rule(s) into anchor %s",
            len(pipe_lines),
            len(rule_lines),
            self._anchor,
        )

        for number in sorted(set(previous) - set(wanted)):
            self._delete_pipe(number)

        if not self.is_enabled():
            self._enable()

    def kernel_pipes(self) -> dict[int, str]:
        """bwctl-range dummynet pipes currently configured, as number → bandwidth."""
        text = self._run([self._dnctl, "list"])
        return {
            number: bandwidth
            for number, bandwidth in parse_pipe_list(text).items()
            if is_owned_pipe(number)
        }

    def is_enabled(self) -> bool:
        try:
            proc = subprocess.run(
                [self._pfctl, "-s", "info"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug("Cannot query pf status: %s", e)
            return False
        return "Status: Enabled" in proc.stdout

    def read_counters(self, ip: str) -> Counters | None:
        by_label: dict[str, int] = {}
        for listing in ("rules", "dummynet"):
            text = self._listing(listing)
            for label, count in parse_labelled_bytes(text).items():
                by_label[label] = by_label.get(label, 0) + count

        up = by_label.get(rule_label(ip, Direction.UP))
        down = by_label.get(rule_label(ip, Direction.DOWN))
        if up is None and down is None:
            return None
        return Counters(bytes_up=up or 0, bytes_down=down or 0)

    def _enable(self) -> None:
        try:
            self._run([self._pfctl, "-E"])
        except ApplyError as e:
            if "already enabled" in e.detail:
                return
            if e.kind is ApplyFailure.PERMISSION:
                raise
            raise ApplyError(ApplyFailure.DISABLED, e.detail) from e
        logger.info("Enabled pf")

    def _restore_pipes(self, configured: list[int], previous: dict[int, str]) -> None:
        """Undo the pipe changes of a rejected apply, best effort."""
        for number in configured:
            try:
                if number in previous:
                    self._run(
                        [self._dnctl, "pipe", str(number), "config", "bw", previous[number]]
                    )
                else:
                    self._run([self._dnctl, "pipe", str(number), "delete"])
            except ApplyError as e:
                logger.error("Could not restore pipe %d: %s", number, e)
        if configured:
            logger.warning("Restored %d pipe(s) after a rejected load", len(configured))

    def _delete_pipe(self, number: int) -> None:
        try:
            self._run([self._dnctl, "pipe", str(number), "delete"])
        except ApplyError as e:
            logger.warning("Stale pipe %d not deleted: %s", number, e)
            return
        logger.debug("Deleted stale pipe %d", number)

    def _listing(self, what: str) -> str:
        try:
            proc = subprocess.run(
                [self._pfctl, "-a", self._anchor, "-v", "-s", what],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise AdapterUnavailable(f"pfctl unavailable: {e}") from e
        if proc.returncode != 0:
            raise AdapterUnavailable(
                f"pfctl -s {what} failed: {proc.stderr.strip() or proc.returncode}"
            )
        return proc.stdout

    def _run(self, cmd: list[str], input_text: str | None = None) -> str:
        try:
            proc = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise ApplyError(ApplyFailure.UNAVAILABLE, f"{cmd[0]} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ApplyError(ApplyFailure.UNKNOWN, f"{cmd[0]} timed out") from e

        if proc.returncode != 0:
            detail = proc.stderr.strip() or f"exit status {proc.returncode}"
            logger.error("Command failed: %s", " ".join(cmd))
            raise ApplyError(classify_failure(detail), detail)
        return proc.stdout


def classify_failure(stderr: str) -> ApplyFailure:
    """Map pfctl/dnctl error output to an ApplyFailure kind."""
    lower = stderr.lower()
    if "permission denied" in lower or "operation not permitted" in lower:
        return ApplyFailure.PERMISSION
    if "syntax error" in lower or "invalid" in lower:
        return ApplyFailure.SYNTAX
    if "not enabled" in lower or "disabled" in lower:
        return ApplyFailure.DISABLED
    return ApplyFailure.UNKNOWN


def parse_labelled_bytes(text: str) -> dict[str, int]:
    """Sum the ``Bytes:`` counters of verbose pfctl output per rule label.

    Verbose listings print each rule followed by indented ``[ ... ]``
    statistics lines; statistics belong to the closest rule above them.
    """
    totals: dict[str, int] = {}
    label: str | None = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if not stripped.startswith("["):
            match = _LABEL_RE.search(stripped)
            label = match.group(1) if match else None
            continue
        if label is None:
            continue
        match = _BYTES_RE.search(stripped)
        if match:
            totals[label] = totals.get(label, 0) + int(match.group(1))
    return totals


def parse_pipe_list(text: str) -> dict[int, str]:
    """Map pipe number to a ``bw`` argument that reproduces its bandwidth.

    Only the header line of each pipe is read; queue and mask lines are
    ignored. An unlimited pipe maps to ``0``.
    """
    pipes: dict[int, str] = {}
    for line in text.splitlines():
        match = _PIPE_LIST_RE.match(line.strip())
        if match is None:
            continue
        number = int(match.group("number"))
        if match.group("unlimited"):
            pipes[number] = "0"
            continue
        bits = float(match.group("value")) * _PREFIX[match.group("prefix")]
        if match.group("unit") == "Byte":
            bits *= 8
        bits_per_sec = int(round(bits))
        if bits_per_sec % 8000 == 0:
            pipes[number] = f"{bits_per_sec // 8000}KByte/s"
        else:
            pipes[number] = f"{bits_per_sec}bit/s"
    return pipes
