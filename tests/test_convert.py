"""
Tests for generalizing and specializing backup files.
"""

import codecs
from pathlib import Path

import pytest

from gpokit.exceptions import GeneralizationError, TokenConflictError
from gpokit.policy.convert import (
    TextEncoding,
    convert_from_generic_pol_file,
    convert_from_generic_xml_file,
    convert_to_generic_pol_file,
    convert_to_generic_xml_file,
    decode_text,
    encode_text,
    generalize_tree,
    specialize_tree,
)
from gpokit.identity import DomainIdentity
from gpokit.policy.pol import PolEntry, PolFile, RegType, read_pol, serialize_pol


class TestEncodingDetection:
    """Tests for decode_text and encode_text."""

    def test_utf16_with_bom(self):
        raw = codecs.BOM_UTF16_LE + "<a>contoso</a>\r\n".encode("utf-16-le")

        text, encoding = decode_text(raw)

        assert text == "<a>contoso</a>\r\n"
        assert encoding == TextEncoding("utf-16-le", codecs.BOM_UTF16_LE)
        assert encode_text(text, encoding) == raw

    def test_utf8_with_bom(self):
        raw = codecs.BOM_UTF8 + "[Unicode]\r\nUnicode=yes\r\n".encode("utf-8")

        text, encoding = decode_text(raw)

        assert not text.startswith("\ufeff")
        assert encode_text(text, encoding) == raw

    def test_plain_utf8(self):
        text, encoding = decode_text("Grüße".encode("utf-8"))

        assert text == "Grüße"
        assert encoding == TextEncoding("utf-8")

    def test_latin1_fallback_is_lossless(self):
        raw = b"caf\xe9 \x80"

        text, encoding = decode_text(raw)

        assert encoding.codec == "latin-1"
        assert encode_text(text, encoding) == raw

    def test_unencodable_text_names_the_file(self):
        with pytest.raises(GeneralizationError) as exc_info:
            encode_text("\\\\ΩMEGA\\share", TextEncoding("latin-1"), "scripts.ini")

        assert exc_info.value.message.startswith("scripts.ini: 'Ω'")
        assert "latin-1" in exc_info.value.message


class TestTextFiles:
    """Tests for XML/INF/INI conversion."""

    def test_generalize_in_place_keeps_bom_and_line_endings(self, tmp_path, contoso, generic):
        path = tmp_path / "GptTmpl.inf"
        original = "[Group Membership]\r\n*S-1-5-32-544__Members = CONTOSO\\Domain Admins\r\n"
        path.write_bytes(codecs.BOM_UTF16_LE + original.encode("utf-16-le"))

        count = convert_to_generic_xml_file(path, contoso, generic)

        raw = path.read_bytes()
        assert count == 1
        assert raw.startswith(codecs.BOM_UTF16_LE)
        assert raw[2:].decode("utf-16-le") == original.replace("CONTOSO", "GPOGENERICNB")

    def test_round_trip_is_byte_identical(self, tmp_path, contoso, generic):
        path = tmp_path / "Backup.xml"
        original = (
            b'<?xml version="1.0" encoding="utf-8"?>\n'
            b"<Domain><![CDATA[contoso.com]]></Domain>\n"
            b"<DC><![CDATA[dc01.contoso.com]]></DC>\n"
        )
        path.write_bytes(original)

        convert_to_generic_xml_file(path, contoso, generic)
        assert b"contoso" not in path.read_bytes()

        convert_from_generic_xml_file(path, contoso, generic)
        assert path.read_bytes() == original

    def test_dest_leaves_source_untouched(self, tmp_path, contoso, generic):
        src = tmp_path / "scripts.ini"
        dest = tmp_path / "out.ini"
        src.write_text("0CmdLine=\\\\contoso.com\\NETLOGON\\logon.cmd\n")

        convert_to_generic_xml_file(src, contoso, generic, dest=dest)

        assert "contoso.com" in src.read_text()
        assert "gpo-generic.invalid" in dest.read_text()

    def test_conflict_names_the_file(self, tmp_path, contoso, generic):
        path = tmp_path / "gpreport.xml"
        path.write_text("<Name>GPOGENERICNB</Name>")

        with pytest.raises(TokenConflictError) as exc_info:
            convert_to_generic_xml_file(path, contoso, generic)

        assert "gpreport.xml" in exc_info.value.message
        assert path.read_text() == "<Name>GPOGENERICNB</Name>"

    def test_specialize_latin1_file_into_non_latin_domain(self, tmp_path, generic):
        path = tmp_path / "scripts.ini"
        original = b"0CmdLine=caf\xe9 GPOGENERICNB\\logon.cmd\r\n"
        path.write_bytes(original)
        target = DomainIdentity("dc.omega.test", "omega.test", "ΩMEGA")

        with pytest.raises(GeneralizationError) as exc_info:
            convert_from_generic_xml_file(path, target, generic)

        assert "scripts.ini" in exc_info.value.message
        assert path.read_bytes() == original


class TestPolFiles:
    """Tests for registry.pol conversion."""

    @pytest.fixture
    def pol_path(self, tmp_path):
        pol = PolFile(
            entries=[
                PolEntry(
                    "Software\\Policies\\Microsoft\\Windows\\System",
                    "LogonScript",
                    RegType.REG_SZ,
                    "\\\\dc01.contoso.com\\NETLOGON\\a.cmd\x00".encode("utf-16-le"),
                ),
                PolEntry("Software\\Test", "Flag", RegType.REG_DWORD, b"\x01\x00\x00\x00"),
            ]
        )
        path = tmp_path / "registry.pol"
        path.write_bytes(serialize_pol(pol))
        return path

    def test_generalize_pol(self, pol_path, contoso, generic):
        count = convert_to_generic_pol_file(pol_path, contoso, generic)

        entries = read_pol(pol_path).entries
        assert count == 1
        assert entries[0].value == "\\\\gposerver.gpo-generic.invalid\\NETLOGON\\a.cmd"
        assert entries[1].value == 1

    def test_pol_round_trip(self, pol_path, contoso, generic):
        original = pol_path.read_bytes()

        convert_to_generic_pol_file(pol_path, contoso, generic)
        convert_from_generic_pol_file(pol_path, contoso, generic)

        assert pol_path.read_bytes() == original

    def test_specialize_into_other_domain(self, pol_path, contoso, fabrikam, generic):
        convert_to_generic_pol_file(pol_path, contoso, generic)

        convert_from_generic_pol_file(pol_path, fabrikam, generic)

        assert read_pol(pol_path).entries[0].value == "\\\\dc1.fabrikam.net\\NETLOGON\\a.cmd"

    def test_pol_conflict(self, tmp_path, contoso, generic):
        path = tmp_path / "registry.pol"
        pol = PolFile(entries=[PolEntry("K", "V", RegType.REG_SZ, "GPOGENERICNB\x00".encode("utf-16-le"))])
        path.write_bytes(serialize_pol(pol))

        with pytest.raises(TokenConflictError):
            convert_to_generic_pol_file(path, contoso, generic)


class TestTrees:
    """Tests for generalize_tree and specialize_tree."""

    def test_backup_folder_round_trip(self, backup_root, tmp_path, contoso, generic):
        folder = next(p for p in backup_root.iterdir() if p.is_dir())
        generalized = tmp_path / "generic"
        restored = tmp_path / "restored"

        summary = generalize_tree(folder, generalized, contoso, generic)
        specialize_tree(generalized, restored, contoso, generic)

        assert summary.replacements > 0
        for path in folder.rglob("*"):
            if path.is_file():
                relative = path.relative_to(folder)
                assert b"contoso" not in (generalized / relative).read_bytes().lower()
                assert (restored / relative).read_bytes() == path.read_bytes()

    def test_other_files_copied(self, tmp_path, contoso, generic):
        src = tmp_path / "src"
        (src / "DomainSysvol").mkdir(parents=True)
        (src / "DomainSysvol" / "logo.bmp").write_bytes(b"BMcontoso.com")
        (src / "Backup.xml").write_text("<a>contoso.com</a>")

        summary = generalize_tree(src, tmp_path / "dst", contoso, generic)

        assert summary.file_count == 2
        assert [p.name for p in summary.copied] == ["logo.bmp"]
        assert (tmp_path / "dst" / "DomainSysvol" / "logo.bmp").read_bytes() == b"BMcontoso.com"

    def test_unmapped_letter_case_recorded(self, tmp_path, contoso, generic):
        src = tmp_path / "src"
        drives = src / "DomainSysvol" / "GPO" / "User" / "Preferences" / "Drives"
        drives.mkdir(parents=True)
        (drives / "Drives.xml").write_text(
            '<Drive name="H:"><Properties path="\\\\Contoso.com\\dfs\\home" label="Home"/></Drive>'
        )
        pol = PolFile(entries=[PolEntry("K", "Server", RegType.REG_SZ, "dc01.Contoso.com\x00".encode("utf-16-le"))])
        (src / "registry.pol").write_bytes(serialize_pol(pol))
        (src / "Backup.xml").write_text("<a>contoso.com CONTOSO</a>")

        summary = generalize_tree(src, tmp_path / "dst", contoso, generic)

        assert summary.unmapped == {
            Path("DomainSysvol/GPO/User/Preferences/Drives/Drives.xml"): ["Contoso.com"],
            Path("registry.pol"): ["dc01.Contoso.com"],
        }
        assert summary.replacements == 2

    def test_specialize_does_not_scan(self, tmp_path, contoso, generic):
        src = tmp_path / "src"
        src.mkdir()
        (src / "Backup.xml").write_text("<a>Contoso gpo-generic.invalid</a>")

        summary = specialize_tree(src, tmp_path / "dst", contoso, generic)

        assert summary.unmapped == {}
        assert (tmp_path / "dst" / "Backup.xml").read_text() == "<a>Contoso contoso.com</a>"
