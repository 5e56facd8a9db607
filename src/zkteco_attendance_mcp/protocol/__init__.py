"""Protocol layer: frame codec, command codes, and payload parsing."""

from .framing import Frame, decode, encode, parse_frame
from .commands import Command
