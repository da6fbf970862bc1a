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

"""
patterns.py - Centralized regex patterns for the frame filter
All regex patterns are compiled once at module load time
"""

import re

# ANSI escape code pattern
ANSI_PATTERN = re.compile(
    r'(\x1B\[[0-?]*[ -/]*[@-~]|'  # CSI sequences (colors, cursor moves, private modes)
    r'\x1B\][^\x07\x1B]*(?:\x07|\x1B\\)|'  # OSC sequences ended by BEL or ST
    r'\x1BP[^\x1B]*\x1B\\|'  # DCS sequences
    r'\x1B[()][0-9A-Za-z]|'  # Charset selection
    r'\x1B#[0-9]|'  # Line attributes
    r'\x1B[=>78]|'  # Keypad modes, save/restore cursor
    r'\x1B[@-Z\\-_]?)'  # Two-byte sequences, or a lone ESC cut off at a chunk boundary
)

# Control characters left over after the escapes are gone (keeps \t, \n and \r)
CONTROL_CHAR_PATTERN = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')

LINE_SPLIT_PATTERN = re.compile(r'\r?\n')

# Box drawing glyphs of the input box
BOX_TOP = '╭'
BOX_PANE = '│'
BOX_BOTTOM = '╰'

# Completion marker that may fall inside the transient tail of a frame
COMPLETION_MARKER_PATTERN = re.compile(r'^✓\s*Indexing complete|Indexing complete', re.IGNORECASE)

# Lines framed by pane borders: "│ ... │" or "║ ... ║"
PANE_LINE_PATTERN = re.compile(r'^\s*[│║](.*?)[│║]\s*$')

# Inline suffix transforms, applied in order
SPINNER_SUFFIX_PATTERN = re.compile(r'[\u2800-\u28FF]\s*(Sending request|Processing response|Indexing).*$', re.IGNORECASE)
ELLIPSIS_STATUS_SUFFIX_PATTERN = re.compile(r'\s*(Sending request|Processing response|Indexing)\.{3}.*$', re.IGNORECASE)
INTERRUPT_HINT_SUFFIX_PATTERN = re.compile(r'\s*\([^)]*esc to interrupt\).*$', re.IGNORECASE)
DIVIDER_SUFFIX_PATTERN = re.compile(
    r'[ \t\u2500-\u257F]*[\u256D\u2570]?[\u2500\u2501\u2550\u2504\u2505\u2506\u2507\u254C\u254D]+[\u256E\u256F]?[ \t]*$'
)

# Whole-line chrome
BORDER_ONLY_PATTERN = re.compile(r'^[ \t\u2500-\u257F]+$')
FOOTER_HINT_PATTERN = re.compile(r'(Ctrl\+P|Prompt Enhancer|\? to show shortcuts|type / for commands)', re.IGNORECASE)
TRY_HINT_PATTERN = re.compile(r"\bTry '.*'", re.IGNORECASE)
RIGHT_PATH_PATTERN = re.compile(r'^\s*[A-Za-z]:\\\S+$|^\s{2,}~?/\S+$')
SPINNER_LINE_PATTERN = re.compile(r'^\s*[\u2800-\u28FF].*\b(Sending|Processing|Indexing)\b.*$', re.IGNORECASE)
PROGRESS_BAR_PATTERN = re.compile(r'[░█]+\s*\d+%')
BARE_PROMPT_PATTERN = re.compile(r'^\s*[>›❯»]\s*$')
