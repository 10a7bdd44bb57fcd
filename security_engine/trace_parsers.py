"""
security_engine/trace_parsers.py

Line-record parsers for syscall tracer output.
──────────────────────────────────────────────
Each tracing backend gets one TraceParser subclass that turns a raw output
line into a TraceRecord (or None when the line carries nothing we track).
SandboxCollector only ever sees TraceRecords, so supporting a new tracer
means writing one parser here.

Record kinds:
    open     a file was opened (path, and whether write flags were set)
    connect  a socket connect (ip/port when the tracer prints them)
    exec     a process image was executed (executable + argv)
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class TraceRecord:
    kind: str
    path: Optional[str] = None
    write: bool = False
    ip: Optional[str] = None
    port: int = 0
    executable: Optional[str] = None
    args: List[str] = field(default_factory=list)


# A double-quoted C string as printed by strace/dtruss, escapes included.
_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')
_IPV4 = re.compile(r"\b(\d{1,3}(?:\.\d{1,3}){3})\b")
_HTONS = re.compile(r"htons\((\d+)\)")


class TraceParser(ABC):
    """Turns tracer output lines into TraceRecords."""

    name: str = "trace"

    @abstractmethod
    def parse_line(self, line: str) -> Optional[TraceRecord]:
        ...

    def parse(self, lines: Iterable[str]) -> Iterator[TraceRecord]:
        """Parse every line, skipping the ones that do not parse."""
        for line in lines:
            try:
                record = self.parse_line(line)
            except (ValueError, IndexError) as exc:
                logger.debug("[%s] Unparseable trace line %r: %s", self.name, line[:120], exc)
                continue
            if record is not None:
                yield record


class StraceParser(TraceParser):
    """
    Parser for `strace -f -e trace=open,openat,connect,execve` output.

    Examples of the lines handled:
        4711  openat(AT_FDCWD, "/home/u/.npmrc", O_RDONLY|O_CLOEXEC) = 3
        4711  connect(21, {sa_family=AF_INET, sin_port=htons(443),
              sin_addr=inet_addr("104.16.24.35")}, 16) = -1 EINPROGRESS
        4712  execve("/bin/sh", ["sh", "-c", "node install.js"], 0x7ffd /* 40 vars */) = 0
    """

    name = "strace"

    _SYSCALL = re.compile(r"\b(openat2|openat|open64|open|creat|connect|execve)\(")
    _WRITE_FLAGS = re.compile(r"\bO_(?:WRONLY|RDWR|CREAT|TRUNC|APPEND)\b")

    def parse_line(self, line: str) -> Optional[TraceRecord]:
        match = self._SYSCALL.search(line)
        if match is None:
            return None
        syscall = match.group(1)
        rest = line[match.end():]

        if syscall == "connect":
            ip_match = _IPV4.search(rest)
            if ip_match is None:
                return None  # AF_UNIX and friends
            port_match = _HTONS.search(rest)
            return TraceRecord(
                kind="connect",
                ip=ip_match.group(1),
                port=int(port_match.group(1)) if port_match else 0,
            )

        quoted = _QUOTED.search(rest)
        if quoted is None:
            return None

        if syscall == "execve":
            bracket = rest.find("[", quoted.end())
            args: List[str] = []
            if bracket != -1:
                close = rest.find("]", bracket)
                argv_text = rest[bracket:close if close != -1 else len(rest)]
                args = _QUOTED.findall(argv_text)
            return TraceRecord(kind="exec", executable=quoted.group(1), args=args)

        write = syscall == "creat" or bool(self._WRITE_FLAGS.search(rest))
        return TraceRecord(kind="open", path=quoted.group(1), write=write)


class DtrussParser(TraceParser):
    """
    Parser for macOS `dtruss -f` output.

    dtruss prints pointer arguments as hex, so connect records carry no
    address, and open flags must be decoded numerically:
        1234/0x5678:  open("/Users/u/.npmrc\\0", 0x0, 0x0)      = 3 0
        1234/0x5678:  connect(0x15, 0x7FF7BFEFF3D0, 0x10)       = 0 0
    """

    name = "dtruss"

    _SYSCALL = re.compile(r"\b(open_nocancel|openat_nocancel|openat|open|connect_nocancel|connect|execve|posix_spawn)\(")
    # O_WRONLY | O_RDWR | O_APPEND | O_CREAT | O_TRUNC on Darwin
    _WRITE_MASK = 0x1 | 0x2 | 0x8 | 0x200 | 0x400

    def parse_line(self, line: str) -> Optional[TraceRecord]:
        match = self._SYSCALL.search(line)
        if match is None:
            return None
        syscall = match.group(1)
        rest = line[match.end():]

        if syscall.startswith("connect"):
            return TraceRecord(kind="connect")

        quoted = _QUOTED.search(rest)
        if quoted is None:
            return None
        value = quoted.group(1).replace("\\0", "")

        if syscall in ("execve", "posix_spawn"):
            return TraceRecord(kind="exec", executable=value)

        flags_text = rest[quoted.end():].lstrip(", ").split(",", 1)[0].strip().rstrip(")")
        write = False
        if flags_text.startswith("0x"):
            write = bool(int(flags_text, 16) & self._WRITE_MASK)
        return TraceRecord(kind="open", path=value, write=write)


PARSERS = {
    StraceParser.name: StraceParser,
    DtrussParser.name: DtrussParser,
}


def parser_for(tracer: str) -> TraceParser:
    """Instantiate the parser registered for *tracer* (KeyError if none)."""
    return PARSERS[tracer]()
