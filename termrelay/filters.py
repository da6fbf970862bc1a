#!/usr/bin/env python3

# termrelay - Chat relay for long-lived interactive terminal programs
# Copyright (C) 2025 Robert Macrae
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Frame filter - turns a raw, redrawn terminal frame into the settled lines worth relaying.

The child program draws a bordered input box and a footer at the bottom of the screen and
redraws spinners, progress bars and status text in place. None of that is answer content.
filter_frame() drops the transient tail, cuts everything from the last input box down,
unwraps pane borders and then runs each line through an ordered list of named rules.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Tuple

from .errors import ErrorKind
from .logs import log_message
from .patterns import (
    ANSI_PATTERN,
    BARE_PROMPT_PATTERN,
    BORDER_ONLY_PATTERN,
    BOX_BOTTOM,
    BOX_PANE,
    BOX_TOP,
    COMPLETION_MARKER_PATTERN,
    CONTROL_CHAR_PATTERN,
    DIVIDER_SUFFIX_PATTERN,
    ELLIPSIS_STATUS_SUFFIX_PATTERN,
    FOOTER_HINT_PATTERN,
    INTERRUPT_HINT_SUFFIX_PATTERN,
    LINE_SPLIT_PATTERN,
    PANE_LINE_PATTERN,
    PROGRESS_BAR_PATTERN,
    RIGHT_PATH_PATTERN,
    SPINNER_LINE_PATTERN,
    SPINNER_SUFFIX_PATTERN,
    TRY_HINT_PATTERN,
)

# Number of trailing lines holding the live input box and footer
TRANSIENT_TAIL_LINES = 4

# Transport limit for one chat message, kept under the ~2000 character cap
DEFAULT_CHUNK_LIMIT = 1900


@dataclass(frozen=True)
class LineRule:
    """A named whole-line predicate; a matching line is dropped from the frame"""
    name: str
    pattern: Pattern

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


# Inline transforms, applied in order to every candidate line
SUFFIX_TRANSFORMS: List[Tuple[str, Pattern]] = [
    ("spinner-status", SPINNER_SUFFIX_PATTERN),
    ("ellipsis-status", ELLIPSIS_STATUS_SUFFIX_PATTERN),
    ("interrupt-hint", INTERRUPT_HINT_SUFFIX_PATTERN),
    ("divider-run", DIVIDER_SUFFIX_PATTERN),
]

# Whole-line chrome, checked in order after the transforms
LINE_RULES: List[LineRule] = [
    LineRule("border-only", BORDER_ONLY_PATTERN),
    LineRule("footer-hint", FOOTER_HINT_PATTERN),
    LineRule("try-hint", TRY_HINT_PATTERN),
    LineRule("right-aligned-path", RIGHT_PATH_PATTERN),
    LineRule("spinner-line", SPINNER_LINE_PATTERN),
    LineRule("progress-bar", PROGRESS_BAR_PATTERN),
    LineRule("bare-prompt", BARE_PROMPT_PATTERN),
]


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences and stray control characters"""
    return CONTROL_CHAR_PATTERN.sub('', ANSI_PATTERN.sub('', text))


def split_to_chunks(text: str, limit: int = DEFAULT_CHUNK_LIMIT) -> List[str]:
    """Split text into consecutive slices of at most limit characters"""
    if limit <= 0:
        raise ValueError("limit must be positive")
    return [text[i:i + limit] for i in range(0, len(text), limit)]


def find_completion_marker(lines: List[str]) -> Optional[str]:
    """Return the trimmed text of the last completion marker among lines, if any"""
    for line in reversed(lines):
        stripped = line.strip()
        if COMPLETION_MARKER_PATTERN.search(stripped):
            return stripped
    return None


def find_last_input_box(lines: List[str]) -> int:
    """Index of the top border of the last top/pane/bottom triple, or -1"""
    last_top = -1
    for i in range(len(lines) - 2):
        if (lines[i].lstrip().startswith(BOX_TOP)
                and lines[i + 1].lstrip().startswith(BOX_PANE)
                and lines[i + 2].lstrip().startswith(BOX_BOTTOM)):
            last_top = i
    return last_top


def clean_line(line: str) -> str:
    """Unwrap pane borders and strip status, interrupt and divider suffixes"""
    candidate = line.rstrip()

    match = PANE_LINE_PATTERN.match(candidate)
    if match:
        candidate = match.group(1).rstrip()

    for _name, pattern in SUFFIX_TRANSFORMS:
        candidate = pattern.sub('', candidate)

    return candidate.rstrip()


def skip_reason(line: str) -> Optional[str]:
    """Name of the rule that drops an already-cleaned line, or None when the line is kept"""
    if not line.strip():
        return "empty"
    for rule in LINE_RULES:
        if rule.matches(line):
            return rule.name
    return None


def collapse_repeats(lines: List[str]) -> List[str]:
    """Collapse immediate repeats into a single line"""
    collapsed: List[str] = []
    for line in lines:
        if not collapsed or collapsed[-1] != line:
            collapsed.append(line)
    return collapsed


def filter_lines(lines: List[str], on_skip: Optional[Callable[[str, str], None]] = None) -> List[str]:
    """Clean each line and drop chrome; on_skip(line, reason) is told about every dropped line"""
    kept = []
    for raw_line in lines:
        candidate = clean_line(raw_line)
        reason = skip_reason(candidate)
        if reason:
            if on_skip and raw_line.strip():
                on_skip(candidate if candidate.strip() else raw_line.strip(), reason)
            continue
        kept.append(candidate)
    return kept


def filter_frame(raw: str) -> str:
    """Filter one raw frame of terminal output down to its settled content.

    Never raises: anything the rules do not recognise passes through unchanged, and a
    frame the rules choke on comes back with only its escape sequences removed.
    """
    try:
        return _filter_frame(raw)
    except Exception as e:
        log_message("WARNING", f"Frame filter fell back to pass-through ({ErrorKind.FILTER_INPUT.value}): "
                               f"{type(e).__name__}: {e}")
        return strip_ansi(raw).strip()


def _filter_frame(raw: str) -> str:
    lines = LINE_SPLIT_PATTERN.split(strip_ansi(raw))

    # The transient tail is scanned for the completion marker before it is dropped
    marker = find_completion_marker(lines[-TRANSIENT_TAIL_LINES:])
    base = lines[:-TRANSIENT_TAIL_LINES] if len(lines) > TRANSIENT_TAIL_LINES else list(lines)

    last_box = find_last_input_box(base)
    if last_box >= 0:
        base = base[:last_box]

    kept = collapse_repeats(filter_lines(base))

    if marker and not any(COMPLETION_MARKER_PATTERN.search(line) for line in kept):
        kept.append(marker)

    result = '\n'.join(kept).strip()
    log_message("FILTER", f"Frame of {len(lines)} lines filtered to {len(kept)} lines")
    return result


def explain_frame(raw: str) -> List[Tuple[str, str]]:
    """List (line, reason) for every line filter_frame would drop from the body of a frame"""
    lines = LINE_SPLIT_PATTERN.split(strip_ansi(raw))
    dropped: List[Tuple[str, str]] = []

    if len(lines) > TRANSIENT_TAIL_LINES:
        dropped.extend((line, "transient-tail") for line in lines[-TRANSIENT_TAIL_LINES:] if line.strip())
        base = lines[:-TRANSIENT_TAIL_LINES]
    else:
        base = list(lines)

    last_box = find_last_input_box(base)
    if last_box >= 0:
        dropped.extend((line, "input-box") for line in base[last_box:] if line.strip())
        base = base[:last_box]

    filter_lines(base, on_skip=lambda line, reason: dropped.append((line, reason)))
    return dropped
