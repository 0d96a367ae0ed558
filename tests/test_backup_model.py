"""
Tests for reading GPO backup folders.
"""

from datetime import datetime

import pytest

from gpokit.backup.model import (
    BACKUP_XML_FILE,
    BKUPINFO_FILE,
    GPREPORT_FILE,
    BackupInfo,
    find_backups,
    group_by_gpo,
    latest_backups,
    load_backup,
    new_guid,
    normalize_guid,
    write_backup_metadata,
)
from gpokit.exceptions import InvalidBackupError

GPO_GUID = "{31B2F340-016D-11D2-945F-00C04FB984F9}"

# Trimmed bkupInfo.xml as written by Backup-GPO.
BKUPINFO_XML = """<BackupInst xmlns="http://www.microsoft.com/GroupPolicy/GPOOperations/Manifest">
  <GPOGuid><![CDATA[{31B2F340-016D-11D2-945F-00C04FB984F9}]]></GPOGuid>
  <GPODomain><![CDATA[contoso.com]]></GPODomain>
  <GPODomainGuid><![CDATA[{0E5D4C5B-1C62-4E3A-9B2B-6E2B7B8E6F10}]]></GPODomainGuid>
  <GPODomainController><![CDATA[dc01.contoso.com]]></GPODomainController>
  <BackupTime><![CDATA[2024-03-01T10:15:00]]></BackupTime>
  <ID><![CDATA[{a1b2c3d4-0000-1111-2222-333344445555}]]></ID>
  <Comment><![CDATA[weekly]]></Comment>
  <GPODisplayName><![CDATA[Default Domain Policy]]></GPODisplayName>
</BackupInst>
"""


def _info(backup_id, when, guid=GPO_GUID, name="Default Domain Policy"):
    return BackupInfo(
        backup_id=backup_id,
        gpo_guid=guid,
        display_name=name,
        domain="contoso.com",
        domain_controller="dc01.contoso.com",
        backup_time=when,
    )


class TestGuids:
    """Tests for GUID helpers."""

    def test_normalize_adds_braces_and_upper_case(self):
        assert normalize_guid("31b2f340-016d-11d2-945f-00c04fb984f9") == GPO_GUID

    def test_normalize_keeps_normal_form(self):
        assert normalize_guid(GPO_GUID) == GPO_GUID

    def test_normalize_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_guid("not-a-guid")

    def test_new_guid_is_normalized(self):
        guid = new_guid()

        assert normalize_guid(guid) == guid
        assert guid != new_guid()


class TestLoadBackup:
    """Tests for load_backup."""

    def test_load_backup_gpo_xml(self, tmp_path):
        folder = tmp_path / "{A1B2C3D4-0000-1111-2222-333344445555}"
        folder.mkdir()
        (folder / BKUPINFO_FILE).write_text(BKUPINFO_XML)

        info = load_backup(folder)

        assert info.gpo_guid == GPO_GUID
        assert info.backup_id == "{A1B2C3D4-0000-1111-2222-333344445555}"
        assert info.display_name == "Default Domain Policy"
        assert info.domain == "contoso.com"
        assert info.domain_controller == "dc01.contoso.com"
        assert info.backup_time == datetime(2024, 3, 1, 10, 15)
        assert info.comment == "weekly"
        assert info.path == folder
        assert info.user_version == 0

    def test_missing_bkupinfo(self, tmp_path):
        with pytest.raises(InvalidBackupError, match="not found"):
            load_backup(tmp_path)

    def test_malformed_xml(self, tmp_path):
        (tmp_path / BKUPINFO_FILE).write_text("<BackupInst>")

        with pytest.raises(InvalidBackupError, match="not valid XML"):
            load_backup(tmp_path)

    def test_missing_fields(self, tmp_path):
        (tmp_path / BKUPINFO_FILE).write_text("<BackupInst><GPOGuid>x</GPOGuid></BackupInst>")

        with pytest.raises(InvalidBackupError, match="lacks"):
            load_backup(tmp_path)

    def test_bad_backup_time(self, tmp_path):
        (tmp_path / BKUPINFO_FILE).write_text(BKUPINFO_XML.replace("2024-03-01T10:15:00", "yesterday"))

        with pytest.raises(InvalidBackupError, match="BackupTime"):
            load_backup(tmp_path)


class TestWriteMetadata:
    """Tests for write_backup_metadata."""

    def test_written_folder_loads_back(self, tmp_path):
        info = _info("{A1B2C3D4-0000-1111-2222-333344445555}", datetime(2024, 3, 1, 10, 15))
        info.user_version = 4
        info.computer_version = 9
        info.comment = "nightly"

        folder = write_backup_metadata(info, tmp_path / info.backup_id)
        loaded = load_backup(folder)

        assert loaded.to_dict() == info.to_dict()
        assert (folder / BACKUP_XML_FILE).exists()

    def test_gpreport_is_utf16_with_bom(self, tmp_path):
        info = _info("{A1B2C3D4-0000-1111-2222-333344445555}", datetime(2024, 3, 1))

        folder = write_backup_metadata(info, tmp_path / info.backup_id)

        raw = (folder / GPREPORT_FILE).read_bytes()
        assert raw.startswith(b"\xff\xfe")
        assert "Default Domain Policy" in raw[2:].decode("utf-16-le")


class TestFindBackups:
    """Tests for listing and grouping backups."""

    def test_find_backups_sorted_oldest_first(self, tmp_path):
        for backup_id, day in (
            ("{00000000-0000-0000-0000-000000000002}", 2),
            ("{00000000-0000-0000-0000-000000000001}", 5),
        ):
            write_backup_metadata(_info(backup_id, datetime(2024, 1, day)), tmp_path / backup_id)

        backups = find_backups(tmp_path)

        assert [b.backup_time.day for b in backups] == [2, 5]

    def test_find_backups_skips_broken_and_unrelated(self, tmp_path, caplog):
        write_backup_metadata(
            _info("{00000000-0000-0000-0000-000000000001}", datetime(2024, 1, 1)),
            tmp_path / "{00000000-0000-0000-0000-000000000001}",
        )
        (tmp_path / "notes").mkdir()
        broken = tmp_path / "broken"
        broken.mkdir()
        (broken / BKUPINFO_FILE).write_text("garbage")
        (tmp_path / "stray.txt").write_text("x")

        backups = find_backups(tmp_path)

        assert len(backups) == 1
        assert "Skipping backup" in caplog.text

    def test_find_backups_missing_root(self, tmp_path):
        assert find_backups(tmp_path / "nope") == []

    def test_group_and_latest(self):
        other = "{6AC1786C-016F-11D2-945F-00C04FB984F9}"
        backups = [
            _info("{00000000-0000-0000-0000-000000000001}", datetime(2024, 1, 1)),
            _info("{00000000-0000-0000-0000-000000000002}", datetime(2024, 2, 1)),
            _info("{00000000-0000-0000-0000-000000000003}", datetime(2024, 1, 15), guid=other),
        ]

        groups = group_by_gpo(backups)
        latest = latest_backups(backups)

        assert [b.backup_time.month for b in groups[GPO_GUID]] == [2, 1]
        assert latest[GPO_GUID].backup_id.endswith("2}")
        assert latest[other].backup_id.endswith("3}")
