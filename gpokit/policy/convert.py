"""
Generalize and specialize GPO backup files.

Text files (Backup.xml, bkupInfo.xml, gpreport.xml, GptTmpl.inf, scripts.ini,
...) are rewritten with their original encoding, byte order mark and line
endings. registry.pol files go through the PReg codec so that data sizes stay
correct after a replacement changes a string's length.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from gpokit.exceptions import GeneralizationError, RoundTripError, TokenConflictError
from gpokit.identity import DomainIdentity, TokenMap, generalize_text, specialize_text
from gpokit.policy.pol import parse_pol, pol_texts, serialize_pol, substitute_pol

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".xml", ".inf", ".ini", ".csv", ".aas"}
POL_SUFFIXES = {".pol"}

_BOMS = [
    (b"\xef\xbb\xbf", "utf-8"),
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
]


@dataclass(frozen=True)
class TextEncoding:
    codec: str
    bom: bytes = b""


def decode_text(raw: bytes) -> tuple[str, TextEncoding]:
    """
    Decode file content, remembering how to encode it back identically.

    BOM-marked UTF-8/UTF-16 is honoured; unmarked content is tried as UTF-8 and
    falls back to latin-1, which maps every byte and so never loses data.
    """
    for bom, codec in _BOMS:
        if raw.startswith(bom):
            return raw[len(bom) :].decode(codec, errors="surrogatepass"), TextEncoding(codec, bom)
    try:
        return raw.decode("utf-8"), TextEncoding("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1"), TextEncoding("latin-1")


def encode_text(text: str, encoding: TextEncoding, file_path: str | None = None) -> bytes:
    errors = "surrogatepass" if encoding.codec.startswith("utf") else "strict"
    try:
        return encoding.bom + text.encode(encoding.codec, errors=errors)
    except UnicodeEncodeError as e:
        raise GeneralizationError(
            f"{file_path or 'Output'}: {e.object[e.start:e.end]!r} cannot be written as {e.encoding}",
            "Use domain names that the file's encoding can represent, or save the file as UTF-8.",
        ) from e


def _target(path: Path, dest: str | Path | None) -> Path:
    return Path(dest) if dest is not None else path


def convert_to_generic_xml_file(
    path: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
    dest: str | Path | None = None,
) -> int:
    """
    Replace real domain names in a text file with placeholders.

    Args:
        path: File to read
        real: Identity of the source domain
        generic: Placeholder identity
        dest: Output file (defaults to rewriting `path` in place)

    Returns:
        Number of replacements made
    """
    path = Path(path)
    text, encoding = decode_text(path.read_bytes())
    result, count = generalize_text(text, real, generic, file_path=str(path))
    _target(path, dest).write_bytes(encode_text(result, encoding, str(path)))
    return count


def convert_from_generic_xml_file(
    path: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
    dest: str | Path | None = None,
) -> int:
    """Replace placeholders in a text file with the real domain names."""
    path = Path(path)
    text, encoding = decode_text(path.read_bytes())
    result, count = specialize_text(text, real, generic)
    _target(path, dest).write_bytes(encode_text(result, encoding, str(path)))
    return count


def convert_to_generic_pol_file(
    path: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
    dest: str | Path | None = None,
) -> int:
    """
    Replace real domain names inside a registry.pol file with placeholders.

    Raises:
        TokenConflictError: If the file already contains a placeholder
        RoundTripError: If the rewrite could not be undone exactly
    """
    path = Path(path)
    raw = path.read_bytes()
    pol = parse_pol(raw)
    token_map = TokenMap(real, generic)

    conflicts = sorted({c for text in pol_texts(pol) for c in token_map.find_conflicts(text)})
    if conflicts:
        raise TokenConflictError(conflicts, str(path))

    unmapped = sorted({n for text in pol_texts(pol) for n in token_map.find_unmapped(text)})
    if unmapped:
        logger.warning(
            f"{path} keeps source name(s) in unmapped letter case: "
            + ", ".join(repr(name) for name in unmapped)
        )

    generalized, count = substitute_pol(pol, token_map)
    result = serialize_pol(generalized)

    if count:
        restored, _ = substitute_pol(generalized, token_map.reverse())
        if serialize_pol(restored) != raw:
            raise RoundTripError(str(path))

    _target(path, dest).write_bytes(result)
    return count


def convert_from_generic_pol_file(
    path: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
    dest: str | Path | None = None,
) -> int:
    """Replace placeholders inside a registry.pol file with the real domain names."""
    path = Path(path)
    pol = parse_pol(path.read_bytes())
    specialized, count = substitute_pol(pol, TokenMap(real, generic).reverse())
    _target(path, dest).write_bytes(serialize_pol(specialized))
    return count


def find_unmapped_names(path: str | Path, real: DomainIdentity, generic: DomainIdentity) -> list[str]:
    """
    Real domain names in a file that generalizing leaves behind.

    Only upper and lower case spellings (and the configured spelling, when the
    placeholder is mixed case too) are replaced; any other spelling is reported.
    """
    path = Path(path)
    raw = path.read_bytes()
    if path.suffix.lower() in POL_SUFFIXES:
        texts = pol_texts(parse_pol(raw))
    else:
        texts = [decode_text(raw)[0]]
    token_map = TokenMap(real, generic)
    return sorted({name for text in texts for name in token_map.find_unmapped(text)})


@dataclass
class ConversionSummary:
    converted: list[Path] = field(default_factory=list)
    copied: list[Path] = field(default_factory=list)
    replacements: int = 0
    unmapped: dict[Path, list[str]] = field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.converted) + len(self.copied)


def _convert_tree(
    src: Path, dst: Path, text_fn, pol_fn, real, generic, scan_unmapped: bool = False
) -> ConversionSummary:
    summary = ConversionSummary()
    in_place = src.resolve() == dst.resolve()

    for path in sorted(p for p in src.rglob("*") if p.is_file()):
        relative = path.relative_to(src)
        out = dst / relative
        out.parent.mkdir(parents=True, exist_ok=True)
        suffix = path.suffix.lower()

        if scan_unmapped and suffix in TEXT_SUFFIXES | POL_SUFFIXES:
            unmapped = find_unmapped_names(path, real, generic)
            if unmapped:
                summary.unmapped[relative] = unmapped

        if suffix in TEXT_SUFFIXES:
            count = text_fn(path, real, generic, dest=out)
        elif suffix in POL_SUFFIXES:
            count = pol_fn(path, real, generic, dest=out)
        else:
            if not in_place:
                shutil.copy2(path, out)
            summary.copied.append(relative)
            continue

        logger.debug(f"{relative}: {count} replacement(s)")
        summary.converted.append(relative)
        summary.replacements += count

    return summary


def generalize_tree(
    src: str | Path,
    dst: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
) -> ConversionSummary:
    """Copy a backup folder to dst, generalizing every text and registry.pol file."""
    return _convert_tree(
        Path(src),
        Path(dst),
        convert_to_generic_xml_file,
        convert_to_generic_pol_file,
        real,
        generic,
        scan_unmapped=True,
    )


def specialize_tree(
    src: str | Path,
    dst: str | Path,
    real: DomainIdentity,
    generic: DomainIdentity,
) -> ConversionSummary:
    """Copy a generalized backup folder to dst with placeholders replaced by real names."""
    return _convert_tree(
        Path(src),
        Path(dst),
        convert_from_generic_xml_file,
        convert_from_generic_pol_file,
        real,
        generic,
    )
