import json
import os
import runpy

import pytest

from conftest import make_env
from crossgcc import build_gcc, common, download, stage
from crossgcc.build_gcc import configure


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(stage, "install_signal_handlers", lambda: None)


def _base_args(home: str, *extra: str) -> list[str]:
    return ["--home", home, "-a", "arm64", "-s", "gnu", "-v", "8", *extra]


def test_x86_64_with_old_gcc_is_rejected_before_any_work(home, commands, capsys):
    assert build_gcc.main(["--home", home, "-a", "x86_64", "-s", "gnu", "-v", "5"]) == 1
    assert commands.commands == []
    assert os.listdir(home) == []
    assert "Will not build" in capsys.readouterr().out


def test_invalid_arch_is_a_usage_error(home, commands):
    with pytest.raises(SystemExit) as info:
        build_gcc.main(["--home", home, "-a", "mips", "-s", "gnu", "-v", "8"])
    assert info.value.code == 2


@pytest.mark.parametrize(
    "argv",
    [
        ["-a", "arm64", "-v", "8"],
        ["-a", "arm64", "-s", "gnu"],
        ["-s", "gnu", "-v", "8"],
        ["-a", "arm64", "-s", "linaro", "-v", "10"],
        ["-a", "arm64", "-s", "gnu", "-v", "8", "-j", "0"],
    ],
)
def test_invalid_settings(home, commands, argv):
    assert build_gcc.main(["--home", home, *argv]) == 1
    assert commands.commands == []


def test_missing_home(tmp_path, commands):
    assert build_gcc.main(_base_args(str(tmp_path / "missing"))) == 1


def test_dump(capsys):
    assert build_gcc.main(["--dump"]) == 0
    assert "gnu 8: releases/gcc-8" in capsys.readouterr().out


def test_dry_run_touches_nothing(home, capsys):
    assert build_gcc.main(_base_args(home, "--dry-run")) == 0
    output = capsys.readouterr().out
    assert f"git clone --depth=1 {download.gcc_git_url}" in output
    assert "sudo mount -t tmpfs" in output
    assert "make all-gcc" in output
    assert "Dry run finished" in output
    assert os.listdir(home) == []


def test_export_and_import(home, tmp_path):
    config_file = str(tmp_path / "config.json")
    assert build_gcc.main(_base_args(home, "--dry-run", "-p", "xz", "--export", config_file)) == 0
    with open(config_file) as file:
        saved = json.load(file)
    assert saved["arch"] == "arm64"
    assert saved["package"] == "xz"

    saved["version"] = "7"
    saved["source"] = "linaro"
    with open(config_file, "w") as file:
        json.dump(saved, file)
    args = build_gcc.get_parser(configure()).parse_args(["--home", home, "-v", "12", "--import", config_file])
    config = configure.parse_args(args)
    config.load_config(args)
    # Options given on the command line win over the file
    assert config.version == "12"
    assert config.source == "linaro"
    assert config.package == "xz"


def test_broken_import_file(home, tmp_path, commands):
    config_file = tmp_path / "config.json"
    config_file.write_text("[1, 2]")
    assert build_gcc.main(_base_args(home, "--import", str(config_file))) == 1
    assert commands.commands == []


def test_report(env, commands, capsys):
    assert build_gcc.report(env, 0, None) == 1
    assert "BUILD FAILED" in capsys.readouterr().out

    compiler = env.installed_compiler()
    os.makedirs(os.path.dirname(compiler))
    open(compiler, "w").close()
    archive = os.path.join(env.home, "toolchain.tar.xz")
    with open(archive, "wb") as file:
        file.write(b"\0" * 2048)
    commands.outputs["--version"] = "aarch64-linux-gnu-gcc (GCC) 8.5.1 20240301\nCopyright\n"

    assert build_gcc.report(env, 0, archive) == 0
    output = capsys.readouterr().out
    assert "BUILD SUCCESSFUL" in output
    assert "8.5.1 20240301" in output
    assert "2.0K" in output


def _create_helpers(env) -> None:
    os.makedirs(env.prebuilts_bin, exist_ok=True)
    for name in download.helper_list:
        open(os.path.join(env.prebuilts_bin, name), "w").close()


def test_interrupt_unmounts_and_exits_130(home, commands, capsys):
    env = make_env(home)
    _create_helpers(env)
    for item in download.artifact_list(env):
        path = item.local_path(env)
        if item.is_git:
            os.makedirs(path)
        else:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            open(path, "w").close()
    commands.interrupt_on = "all-gcc"
    unmount_cwd_list = []
    commands.hook = lambda command: unmount_cwd_list.append(os.getcwd()) if command.startswith("sudo umount") else None

    assert build_gcc.main(_base_args(home, "-j", "4")) == 130

    build_dir_list = [os.path.realpath(path) for path in env.build_dir_list.values()]
    assert len(unmount_cwd_list) == 6
    for cwd in map(os.path.realpath, unmount_cwd_list):
        assert not any(cwd == path or cwd.startswith(path + os.sep) for path in build_dir_list)

    assert "Manually aborted!" in capsys.readouterr().out
    assert commands.commands[-1].startswith("sudo umount -f")
    assert len(commands.find("sudo umount -f")) == 6
    assert commands.index("sudo mount -t tmpfs") < commands.index("make all-gcc") < len(commands.commands) - 3
    assert not commands.find("tar -I")


def test_failed_stage_exits_1(home, commands, capsys):
    _create_helpers(make_env(home))
    commands.fail_on = "axel"
    assert build_gcc.main(_base_args(home, "-nt")) == 1
    output = capsys.readouterr().out
    assert "BUILD FAILED" in output
    assert not commands.find("sudo mount")


def test_unwritable_export_file(home, tmp_path, commands, capsys):
    export_file = str(tmp_path / "missing" / "config.json")
    assert build_gcc.main(_base_args(home, "--export", export_file)) == 1
    assert "Export settings failed" in capsys.readouterr().out
    assert commands.commands == []


def test_report_without_version_output(env, commands, capsys):
    compiler = env.installed_compiler()
    os.makedirs(os.path.dirname(compiler))
    open(compiler, "w").close()
    commands.outputs["--version"] = ""
    assert build_gcc.report(env, 0, None) == 0
    assert f"Toolchain location:{common.RST} {env.prefix}" in capsys.readouterr().out


def test_help_explains_dry_run_status(monkeypatch):
    monkeypatch.setenv("COLUMNS", "500")
    help_text = " ".join(build_gcc.get_parser(configure()).format_help().split())
    assert "A --dry-run only prints the commands and exits with 0 although no compiler is built." in help_text


@pytest.mark.parametrize("module", ["crossgcc.build_gcc", "crossgcc.kernel_gcc"])
def test_modules_are_not_scripts(module):
    with pytest.raises(AssertionError, match="Import this file"):
        runpy.run_module(module, run_name="__main__")
