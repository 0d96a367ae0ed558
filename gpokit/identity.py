"""
Domain identities and the token maps used to generalize and specialize backups.

A backup taken in contoso.com mentions the domain controller FQDN, the DNS
domain name and the NetBIOS name all over its XML and registry.pol files.
Generalizing swaps those for placeholder values so the backup can be imported
into another domain; specializing swaps placeholders for the target domain's
values.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

from gpokit.exceptions import GeneralizationError, RoundTripError, TokenConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainIdentity:
    """The three names that tie Group Policy data to one domain."""

    server_fqdn: str
    dns_domain: str
    netbios_name: str

    def tokens(self) -> list[str]:
        """Names in substitution priority order (the FQDN contains the DNS name)."""
        return [self.server_fqdn, self.dns_domain, self.netbios_name]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomainIdentity":
        return cls(
            server_fqdn=str(data.get("server_fqdn") or ""),
            dns_domain=str(data.get("dns_domain") or ""),
            netbios_name=str(data.get("netbios_name") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


GENERIC_IDENTITY = DomainIdentity(
    server_fqdn="gposerver.gpo-generic.invalid",
    dns_domain="gpo-generic.invalid",
    netbios_name="GPOGENERICNB",
)


def _case_variants(source: str, target: str) -> list[tuple[str, str]]:
    """
    Literal (source, target) pairs registered for one token.

    Upper and lower case forms are always mapped. The mixed case form is only
    mapped when the target has a distinct mixed case form too, otherwise two
    sources would share one placeholder and the substitution could not be undone.
    """
    pairs = [(source.upper(), target.upper()), (source.lower(), target.lower())]
    source_mixed = source not in (source.upper(), source.lower())
    target_mixed = target not in (target.upper(), target.lower())
    if source_mixed and target_mixed:
        pairs.insert(0, (source, target))
    return pairs


class TokenMap:
    """
    Ordered literal substitution from one identity's names to another's.

    Replacement is a single left-to-right pass over the input; at each position
    the longest registered token wins, so "dc01.contoso.com" is replaced as a
    server FQDN rather than as "dc01." followed by a DNS domain.
    """

    def __init__(self, source: DomainIdentity, target: DomainIdentity):
        self.source = source
        self.target = target
        self._mapping: dict[str, str] = {}
        claimed: dict[str, str] = {}

        for src_token, dst_token in zip(source.tokens(), target.tokens()):
            if not src_token or not dst_token:
                continue
            for src, dst in _case_variants(src_token, dst_token):
                if src == dst or src in self._mapping:
                    continue
                if dst in claimed and claimed[dst] != src:
                    raise GeneralizationError(
                        f"Placeholder {dst!r} would stand for both "
                        f"{claimed[dst]!r} and {src!r}"
                    )
                self._mapping[src] = dst
                claimed[dst] = src

        self._compile()

    def _compile(self) -> None:
        ordered = sorted(self._mapping, key=len, reverse=True)
        alternation = "|".join(re.escape(t) for t in ordered)
        self._pattern = re.compile(alternation) if ordered else None
        self._folded_pattern = re.compile(alternation, re.IGNORECASE) if ordered else None

    @property
    def mapping(self) -> dict[str, str]:
        return dict(self._mapping)

    def reverse(self) -> "TokenMap":
        """Map in the opposite direction, with the same case variants swapped."""
        reversed_map = TokenMap(DomainIdentity("", "", ""), DomainIdentity("", "", ""))
        reversed_map.source = self.target
        reversed_map.target = self.source
        reversed_map._mapping = {dst: src for src, dst in self._mapping.items()}
        reversed_map._compile()
        return reversed_map

    def substitute(self, text: str) -> tuple[str, int]:
        """Replace every token, returning the new text and the replacement count."""
        if self._pattern is None:
            return text, 0
        return self._pattern.subn(lambda m: self._mapping[m.group(0)], text)

    def apply(self, text: str) -> str:
        return self.substitute(text)[0]

    def find_conflicts(self, text: str) -> list[str]:
        """Target tokens that already occur in text before any substitution."""
        sources = set(self._mapping)
        return sorted(
            {dst for dst in self._mapping.values() if dst not in sources and dst in text}
        )

    def find_unmapped(self, text: str) -> list[str]:
        """
        Source names that occur in text in a letter case the map does not cover.

        Windows compares these names case-insensitively, so "Contoso.com" still
        refers to the source domain even though only "contoso.com" and
        "CONTOSO.COM" are registered.
        """
        if self._folded_pattern is None:
            return []
        found = {m.group(0) for m in self._folded_pattern.finditer(text)}
        return sorted(name for name in found if name not in self._mapping)


def generalize_text(
    text: str,
    real: DomainIdentity,
    generic: DomainIdentity,
    verify: bool = True,
    file_path: str | None = None,
) -> tuple[str, int]:
    """
    Replace real domain names in text with placeholders.

    Args:
        text: Content to rewrite
        real: Identity of the domain the content came from
        generic: Placeholder identity
        verify: Check that specializing the result gives back text exactly
        file_path: Used in error and warning messages only

    Returns:
        Tuple of (generalized text, number of replacements)

    Raises:
        TokenConflictError: If text already contains a placeholder
        RoundTripError: If the result would not specialize back to text
    """
    token_map = TokenMap(real, generic)

    conflicts = token_map.find_conflicts(text)
    if conflicts:
        raise TokenConflictError(conflicts, file_path)

    result, count = token_map.substitute(text)
    if verify and count and token_map.reverse().apply(result) != text:
        raise RoundTripError(file_path)

    unmapped = token_map.find_unmapped(text)
    if unmapped:
        logger.warning(
            f"{file_path or 'Input'} keeps source name(s) in unmapped letter case: "
            + ", ".join(repr(name) for name in unmapped)
        )
    return result, count


def specialize_text(
    text: str,
    real: DomainIdentity,
    generic: DomainIdentity,
) -> tuple[str, int]:
    """Replace placeholders in text with the real domain names."""
    return TokenMap(real, generic).reverse().substitute(text)
