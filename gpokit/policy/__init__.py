"""
Policy file handling: the registry.pol codec and backup file conversion.
"""

from gpokit.policy.convert import (
    convert_from_generic_pol_file,
    convert_from_generic_xml_file,
    convert_to_generic_pol_file,
    convert_to_generic_xml_file,
    generalize_tree,
    specialize_tree,
)
from gpokit.policy.pol import PolEntry, PolFile, RegType, parse_pol, serialize_pol

__all__ = [
    "PolEntry",
    "PolFile",
    "RegType",
    "parse_pol",
    "serialize_pol",
    "convert_to_generic_xml_file",
    "convert_from_generic_xml_file",
    "convert_to_generic_pol_file",
    "convert_from_generic_pol_file",
    "generalize_tree",
    "specialize_tree",
]
