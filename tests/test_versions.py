"""Tests for the version table and the source resolver."""

import dataclasses

import pytest

from crossgcc import versions
from crossgcc.common import config_error
from crossgcc.versions import arch, fetch_mode, gcc_source, release


def _supported_cases():
    for source, major in versions.supported():
        for mode in fetch_mode:
            if mode == fetch_mode.tarball and versions.version_table[(source, major)].tarball is None:
                continue
            yield source, major, mode


def test_table_is_consistent():
    assert versions.check_table() == []


@pytest.mark.parametrize("source,major,mode", list(_supported_cases()))
def test_supported_combinations_resolve_completely(source, major, mode):
    record = versions.resolve(source, str(major), mode)
    for field in dataclasses.fields(record):
        assert getattr(record, field.name) not in ("", None), field.name
    assert record.source == source
    assert record.major == major
    assert record.mode == mode


@pytest.mark.parametrize("source,major", versions.supported())
def test_modes_share_dependency_versions(source, major):
    if versions.version_table[(source, major)].tarball is None:
        pytest.skip("git only")
    git = versions.resolve(source, major, fetch_mode.git)
    tarball = versions.resolve(source, major, fetch_mode.tarball)
    assert git.glibc_version == tarball.glibc_version
    assert git.isl_version == tarball.isl_version
    assert git.patch_id == tarball.patch_id


@pytest.mark.parametrize(
    "source,version",
    [("gnu", "3"), ("gnu", "15"), ("linaro", "9"), ("linaro", "10"), ("linaro", "11"), ("clang", "8"), ("gnu", "latest"), (None, "8")],
)
@pytest.mark.parametrize("mode", list(fetch_mode))
def test_unsupported_combinations_fail(source, version, mode):
    with pytest.raises(config_error):
        versions.resolve(source, version, mode)


def test_linaro_rejection_message():
    with pytest.raises(config_error, match="Linaro 9.x"):
        versions.resolve("linaro", "9")


def test_gnu_master_has_no_tarball():
    assert versions.resolve("gnu", "14", "git").gcc_ref == "master"
    with pytest.raises(config_error, match="no tarball"):
        versions.resolve("gnu", "14", "tarball")


@pytest.mark.parametrize("version", ["4", "5", "5.5"])
@pytest.mark.parametrize("source", ["gnu", "linaro"])
def test_x86_64_rejects_old_gcc(source, version):
    with pytest.raises(config_error, match="Will not build"):
        versions.resolve(source, version, "git", "x86_64")
    # Other architectures still accept them
    assert versions.resolve(source, version, "git", "i686").major == versions.parse_major(version)


def test_arm64_gnu_8():
    record = versions.resolve("gnu", "8", "git", "arm64")
    assert record.gcc_ref == "releases/gcc-8"
    assert record.binutils_ref == versions.default_version.binutils_git
    assert record.isl_version == versions.default_version.isl
    assert record.glibc_version == versions.default_version.glibc
    assert record.patch_id == "GCC_6-8"
    assert versions.target_triple(arch.arm64) == "aarch64-linux-gnu"


def test_gnu_4_overrides():
    git = versions.resolve("gnu", "4", "git")
    assert git.binutils_ref == "binutils-2_29-branch"
    tarball = versions.resolve("gnu", "4", "tarball")
    assert tarball.gcc_ref == "gcc-4.9.4"
    assert tarball.gcc_tarball_ext == "gz"
    assert tarball.binutils_ref == "2.29.1"
    assert tarball.glibc_version == "2.26"
    assert tarball.isl_version == "0.17.1"


def test_tarball_mode_names_release_archives():
    assert versions.resolve("gnu", "11", "tarball").gcc_ref == "gcc-11.4.0"
    assert versions.resolve("linaro", "8", "tarball").gcc_ref == "8.3-2019.03"


@pytest.mark.parametrize(
    "target_arch,kernel_arch,triple",
    [
        (arch.arm, "arm", "arm-linux-gnueabi"),
        (arch.arm64, "arm64", "aarch64-linux-gnu"),
        (arch.i686, "x86", "i686-linux-gnu"),
        (arch.x86_64, "x86", "x86_64-linux-gnu"),
    ],
)
def test_target_table(target_arch, kernel_arch, triple):
    assert versions.kernel_arch(target_arch) == kernel_arch
    assert versions.target_triple(target_arch) == triple


def test_parse_major():
    assert versions.parse_major("12.1") == 12
    assert versions.parse_major("8") == 8
    assert versions.parse_major(13) == 13
    with pytest.raises(config_error):
        versions.parse_major("eight")
    with pytest.raises(config_error):
        versions.parse_major(None)


def test_parse_arch_rejects_unknown():
    with pytest.raises(config_error, match="invalid arch"):
        versions.parse_arch("mips")


@pytest.mark.parametrize(
    "major,patch",
    [(4, "942-asan-fix-missing-include-signal-h"), (5, "GCC_10_up"), (6, "GCC_6-8"), (8, "GCC_6-8"), (9, "GCC_9"), (14, "GCC_10_up")],
)
def test_patch_id(major, patch):
    assert versions.patch_id(major) == patch


def test_check_table_reports_drifted_rows(monkeypatch):
    monkeypatch.setitem(versions.version_table, (gcc_source.gnu, 8), release("releases/gcc-8", "releases/gcc-8"))
    monkeypatch.setitem(versions.version_table, (gcc_source.gnu, 9), release("releases/gcc-10", "gcc-9.5.0"))
    problem_list = versions.check_table()
    assert any("gnu:8" in problem and "git branch" in problem for problem in problem_list)
    assert any("gnu:9" in problem and "does not name GCC 9" in problem for problem in problem_list)


def test_dump_support(capsys):
    versions.dump_support()
    output = capsys.readouterr().out
    assert "aarch64-linux-gnu" in output
    assert "gnu 14: master, git only" in output
    assert "linaro 9" not in output
