"""
Wire protocol tokens and line formatting.

Everything on the wire is a single UTF-8 line terminated by a newline.
"""

VALID = "Valid"
INVALID = "Invalid"
EXIT = "exit"

# names that would make the handshake replies ambiguous
RESERVED_NAMES = frozenset({VALID, INVALID, EXIT})


def is_acceptable_name(name):
    """A proposed name must be non-empty and must not collide with a protocol token."""
    return bool(name) and name not in RESERVED_NAMES


def connected_notice(name):
    return f"{name} connected."


def disconnected_notice(name):
    return f"{name} disconnected."


def chat_line(name, text):
    return f"{name} said : {text}"


def encode_line(line):
    return line.encode("utf-8") + b"\n"


def decode_line(data):
    return data.decode("utf-8", errors="replace").rstrip("\r\n")
