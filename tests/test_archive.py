"""
Tests for v6 bundle post-processing
"""
import os
import zipfile

import pytest

from rosmirror.archive import extract_npk, filter_bundle, process_bundle


@pytest.fixture
def bundle(tmp_path):
    path = tmp_path / 'all_packages-arm-6.49.7.zip'
    with zipfile.ZipFile(path, 'w') as archive:
        archive.writestr('routeros-arm-6.49.7.npk', b'system')
        archive.writestr('wireless-6.49.7-arm.npk', b'wireless')
        archive.writestr('Dude-6.49.7-arm.npk', b'dude')
        archive.writestr('nested/extra-6.49.7-arm.npk', b'extra')
        archive.writestr('README.txt', b'readme')
    return str(path)


def _names(path):
    with zipfile.ZipFile(path) as archive:
        return sorted(os.path.basename(n) for n in archive.namelist())


class TestFilterBundle:

    def test_removes_prefixed_entries_case_insensitive(self, bundle):
        removed = filter_bundle(bundle, ['dude'])

        assert removed == ['Dude-6.49.7-arm.npk']
        assert 'Dude-6.49.7-arm.npk' not in _names(bundle)
        assert 'routeros-arm-6.49.7.npk' in _names(bundle)

    def test_no_prefixes_is_noop(self, bundle):
        before = os.path.getmtime(bundle)
        assert filter_bundle(bundle, []) == []
        assert os.path.getmtime(bundle) == before

    def test_idempotent(self, bundle):
        filter_bundle(bundle, ['dude'])
        assert filter_bundle(bundle, ['dude']) == []
        assert len(_names(bundle)) == 4

    def test_no_scratch_left_behind(self, bundle):
        filter_bundle(bundle, ['wireless'])
        assert not os.path.exists(bundle + '.repack')


class TestExtract:

    def test_flattens_npk_entries(self, bundle, tmp_path):
        destination = tmp_path / 'out'
        extracted = extract_npk(bundle, str(destination))

        assert sorted(extracted) == sorted([
            'routeros-arm-6.49.7.npk', 'wireless-6.49.7-arm.npk',
            'Dude-6.49.7-arm.npk', 'extra-6.49.7-arm.npk',
        ])
        assert (destination / 'extra-6.49.7-arm.npk').read_bytes() == b'extra'
        assert not (destination / 'README.txt').exists()


class TestProcessBundle:

    def test_filter_then_extract(self, bundle, tmp_path):
        result = process_bundle(bundle, str(tmp_path), ['dude', 'extra'])

        assert result.ok
        assert sorted(result.removed) == ['Dude-6.49.7-arm.npk', 'extra-6.49.7-arm.npk']
        assert sorted(result.extracted) == ['routeros-arm-6.49.7.npk', 'wireless-6.49.7-arm.npk']

    def test_rerun_still_extracts(self, bundle, tmp_path):
        process_bundle(bundle, str(tmp_path), ['dude'])
        os.remove(tmp_path / 'routeros-arm-6.49.7.npk')

        result = process_bundle(bundle, str(tmp_path), ['dude'])

        assert result.removed == []
        assert (tmp_path / 'routeros-arm-6.49.7.npk').exists()

    def test_corrupt_zip_reports_errors(self, tmp_path):
        path = tmp_path / 'broken.zip'
        path.write_bytes(b'not a zip at all')

        result = process_bundle(str(path), str(tmp_path), ['dude'])

        assert not result.ok
        assert len(result.errors) == 2

    def test_missing_zip(self, tmp_path):
        result = process_bundle(str(tmp_path / 'missing.zip'), str(tmp_path))
        assert not result.ok
