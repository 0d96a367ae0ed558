"""
Reader and writer for registry.pol (PReg) files.

Layout:
    b"PReg" + uint32 version
    repeated: [key;value;type;size;data]

Brackets, semicolons, key and value name are UTF-16LE; key and value name end
with a UTF-16 NUL. type and size are little endian uint32 and data is `size`
raw bytes. Serializing a parsed file reproduces it byte for byte.
"""

import struct
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from typing import Any

from gpokit.exceptions import PolFormatError
from gpokit.identity import TokenMap

PREG_SIGNATURE = b"PReg"
PREG_VERSION = 1

_OPEN = "[".encode("utf-16-le")
_CLOSE = "]".encode("utf-16-le")
_SEMICOLON = ";".encode("utf-16-le")
_NUL = "\x00".encode("utf-16-le")


class RegType(IntEnum):
    REG_NONE = 0
    REG_SZ = 1
    REG_EXPAND_SZ = 2
    REG_BINARY = 3
    REG_DWORD = 4
    REG_DWORD_BIG_ENDIAN = 5
    REG_LINK = 6
    REG_MULTI_SZ = 7
    REG_QWORD = 11


STRING_TYPES = {RegType.REG_SZ, RegType.REG_EXPAND_SZ, RegType.REG_MULTI_SZ}


def _decode(raw: bytes) -> str:
    return raw.decode("utf-16-le", errors="surrogatepass")


def _encode(text: str) -> bytes:
    return text.encode("utf-16-le", errors="surrogatepass")


@dataclass
class PolEntry:
    """One registry setting: key, value name, registry type and raw data."""

    key: str
    value_name: str
    reg_type: int
    data: bytes

    @property
    def is_string(self) -> bool:
        return self.reg_type in STRING_TYPES and len(self.data) % 2 == 0

    @property
    def value(self) -> Any:
        """Decoded data for display."""
        if self.is_string:
            text = _decode(self.data)
            if self.reg_type == RegType.REG_MULTI_SZ:
                return [item for item in text.split("\x00") if item]
            return text.rstrip("\x00")
        if self.reg_type == RegType.REG_DWORD and len(self.data) == 4:
            return struct.unpack("<I", self.data)[0]
        if self.reg_type == RegType.REG_DWORD_BIG_ENDIAN and len(self.data) == 4:
            return struct.unpack(">I", self.data)[0]
        if self.reg_type == RegType.REG_QWORD and len(self.data) == 8:
            return struct.unpack("<Q", self.data)[0]
        return self.data.hex()

    @property
    def type_name(self) -> str:
        try:
            return RegType(self.reg_type).name
        except ValueError:
            return f"TYPE_{self.reg_type}"


@dataclass
class PolFile:
    version: int = PREG_VERSION
    entries: list[PolEntry] = field(default_factory=list)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def expect(self, token: bytes, what: str) -> None:
        if self.data[self.pos : self.pos + len(token)] != token:
            raise PolFormatError(f"expected {what}", self.pos)
        self.pos += len(token)

    def read(self, size: int, what: str) -> bytes:
        if self.pos + size > len(self.data):
            raise PolFormatError(f"truncated {what}", self.pos)
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def read_uint32(self, what: str) -> int:
        return struct.unpack("<I", self.read(4, what))[0]

    def read_string(self, what: str) -> str:
        start = self.pos
        while True:
            unit = self.read(2, what)
            if unit == _NUL:
                return _decode(self.data[start : self.pos - 2])

    def at_end(self) -> bool:
        return self.pos >= len(self.data)


def parse_pol(data: bytes) -> PolFile:
    """
    Parse registry.pol content.

    Raises:
        PolFormatError: On a bad signature or a truncated/malformed entry
    """
    if len(data) < 8 or data[:4] != PREG_SIGNATURE:
        raise PolFormatError("missing PReg signature", 0)

    version = struct.unpack("<I", data[4:8])[0]
    reader = _Reader(data)
    reader.pos = 8
    entries = []

    while not reader.at_end():
        reader.expect(_OPEN, "'['")
        key = reader.read_string("key")
        reader.expect(_SEMICOLON, "';' after key")
        value_name = reader.read_string("value name")
        reader.expect(_SEMICOLON, "';' after value name")
        reg_type = reader.read_uint32("type")
        reader.expect(_SEMICOLON, "';' after type")
        size = reader.read_uint32("size")
        reader.expect(_SEMICOLON, "';' after size")
        payload = reader.read(size, "data")
        reader.expect(_CLOSE, "']'")
        entries.append(PolEntry(key, value_name, reg_type, payload))

    return PolFile(version=version, entries=entries)


def serialize_pol(pol: PolFile) -> bytes:
    """Serialize a PolFile, computing each entry's size from its data."""
    chunks = [PREG_SIGNATURE, struct.pack("<I", pol.version)]
    for entry in pol.entries:
        chunks.extend(
            [
                _OPEN,
                _encode(entry.key),
                _NUL,
                _SEMICOLON,
                _encode(entry.value_name),
                _NUL,
                _SEMICOLON,
                struct.pack("<I", entry.reg_type),
                _SEMICOLON,
                struct.pack("<I", len(entry.data)),
                _SEMICOLON,
                entry.data,
                _CLOSE,
            ]
        )
    return b"".join(chunks)


def read_pol(path: str | Path) -> PolFile:
    """Read and parse a registry.pol file."""
    try:
        return parse_pol(Path(path).read_bytes())
    except PolFormatError as e:
        raise PolFormatError(e.details, e.offset, str(path)) from e


def write_pol(path: str | Path, pol: PolFile) -> None:
    Path(path).write_bytes(serialize_pol(pol))


def substitute_pol(pol: PolFile, token_map: TokenMap) -> tuple[PolFile, int]:
    """
    Apply a token map to keys, value names and string data.

    Non-string data is left untouched. Sizes follow the rewritten data.

    Returns:
        Tuple of (new PolFile, number of replacements)
    """
    total = 0
    entries = []
    for entry in pol.entries:
        key, key_count = token_map.substitute(entry.key)
        value_name, name_count = token_map.substitute(entry.value_name)
        data = entry.data
        data_count = 0
        if entry.is_string:
            text, data_count = token_map.substitute(_decode(entry.data))
            if data_count:
                data = _encode(text)
        total += key_count + name_count + data_count
        entries.append(replace(entry, key=key, value_name=value_name, data=data))
    return PolFile(version=pol.version, entries=entries), total


def pol_texts(pol: PolFile) -> list[str]:
    """All text carried by a PolFile: keys, value names and string data."""
    texts = []
    for entry in pol.entries:
        texts.append(entry.key)
        texts.append(entry.value_name)
        if entry.is_string:
            texts.append(_decode(entry.data))
    return texts
