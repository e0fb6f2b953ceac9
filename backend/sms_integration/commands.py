"""
SMS Integration - Inbound Command Parsing

Classifies the text of an inbound SMS into a command. Rules are evaluated
in order against the uppercased, stripped body and the first match wins.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Pattern


class CommandType(str, Enum):
    INTEREST_YES = "interest_yes"
    INTEREST_NO = "interest_no"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    STATUS = "status"
    SHIFTS = "shifts"
    HELP = "help"
    STOP = "stop"
    START = "start"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ParsedCommand:
    type: CommandType
    original_message: str
    shift_code: Optional[str] = None


COMMAND_RULES: Tuple[Tuple[Pattern, CommandType], ...] = (
    (re.compile(r"^(YES|Y|INTERESTED|I WANT IT|CLAIM)"), CommandType.INTEREST_YES),
    (re.compile(r"^(NO|N|PASS|CAN'?T|DECLINE|NOT INTERESTED)"), CommandType.INTEREST_NO),
    (re.compile(r"^CONFIRM"), CommandType.CONFIRM),
    (re.compile(r"^CANCEL"), CommandType.CANCEL),
    (re.compile(r"^STATUS"), CommandType.STATUS),
    (re.compile(r"^SHIFTS?"), CommandType.SHIFTS),
    (re.compile(r"^HELP"), CommandType.HELP),
    (re.compile(r"^(STOP|UNSUBSCRIBE)"), CommandType.STOP),
    (re.compile(r"^(START|SUBSCRIBE)"), CommandType.START),
)

SHIFT_CODE_PATTERN = re.compile(r"\b([A-Z0-9]{6})\b", re.IGNORECASE)


def extract_shift_code(body: str) -> Optional[str]:
    """First 6-character alphanumeric word in the message, uppercased."""
    match = SHIFT_CODE_PATTERN.search(body or "")
    return match.group(1).upper() if match else None


def parse_inbound_command(body: str) -> ParsedCommand:
    original = body or ""
    normalized = original.strip().upper()

    for pattern, command in COMMAND_RULES:
        if pattern.match(normalized):
            if command == CommandType.INTEREST_YES:
                return ParsedCommand(
                    type=command,
                    original_message=original,
                    shift_code=extract_shift_code(original)
                )
            return ParsedCommand(type=command, original_message=original)

    return ParsedCommand(type=CommandType.UNKNOWN, original_message=original)
