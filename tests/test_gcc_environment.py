import os

import pytest

from conftest import make_env
from crossgcc import common, gcc_environment
from crossgcc.gcc_environment import cross_environment


def _prepare(env: gcc_environment.environment) -> None:
    for build_dir in env.build_dir_list.values():
        os.makedirs(build_dir)
    os.makedirs(env.src_dir_list["linux"])


def test_environment_paths(env):
    assert env.target == "aarch64-linux-gnu"
    assert env.prefix.endswith("/root/aarch64-linux-gnu")
    assert env.lib_prefix == os.path.join(env.prefix, "aarch64-linux-gnu")
    assert env.installed_compiler() == os.path.join(env.prefix, "bin", "aarch64-linux-gnu-gcc")
    assert env.src_dir_list["glibc"] == os.path.join(env.home, "glibc-2.39")
    assert set(env.build_dir_list) == {"glibc", "gcc", "binutils"}
    assert not env.tarballs


@pytest.mark.parametrize("jobs", [0, -2])
def test_invalid_jobs(env, home, jobs):
    with pytest.raises(common.config_error):
        gcc_environment.environment(env.record, env.arch, home, jobs)


def test_stage_order(env, commands):
    _prepare(env)
    cross_environment(env).build()

    binutils = commands.index("binutils/configure")
    headers = commands.index("headers_install")
    gcc_configure = commands.index("gcc/configure")
    all_gcc = commands.index("make all-gcc")
    glibc_configure = commands.index("glibc-2.39/configure")
    final_gcc = commands.index("make all -j4")
    assert binutils < headers < gcc_configure < all_gcc < glibc_configure < final_gcc
    assert commands.commands[binutils + 1 : binutils + 3] == ["make -j4", "make install -j4"]
    assert os.path.realpath(os.getcwd()) == os.path.realpath(env.home)


def test_headers_command(env, commands):
    _prepare(env)
    cross_environment(env).build_headers()
    assert commands.commands == [f"make ARCH=arm64 INSTALL_HDR_PATH={env.lib_prefix} headers_install -j4"]
    assert os.path.realpath(os.getcwd()) == os.path.realpath(env.src_dir_list["linux"])


def test_configure_options(env, commands):
    _prepare(env)
    cross_environment(env).build_binutils()
    configure = commands.commands[0]
    assert configure.startswith(f"{env.src_dir_list['binutils']}/configure --disable-multilib --disable-werror")
    assert f"--target=aarch64-linux-gnu --prefix={env.prefix}" in configure
    assert "--disable-gdb" in configure


def test_glibc_stage_non_x86_64(env, commands):
    _prepare(env)
    cross_environment(env).build_glibc()
    assert "libc_cv_forced_unwind=yes" in commands.commands[0]
    assert "--build=x86_64-linux-gnu --host=aarch64-linux-gnu" in commands.commands[0]
    assert commands.index("install csu/crt1.o") < commands.index("-nostdlib")
    # libgcc comes after the crt files and before the full glibc
    assert commands.index("all-target-libgcc") < commands.commands.index("make -j4")
    assert os.path.isfile(os.path.join(env.lib_prefix, "include", "gnu", "stubs.h"))
    assert commands.commands[-1] == "make install -j4"


def test_x86_64_builds_libgcc_with_stage1(home, commands):
    env = make_env(home, arch="x86_64", version="13")
    _prepare(env)
    builder = cross_environment(env)
    builder.build_gcc_stage1()
    assert commands.commands[-2:] == ["make all-target-libgcc -j4", "make install-target-libgcc -j4"]
    commands.commands.clear()
    builder.build_glibc()
    assert not commands.find("libgcc")


def test_failing_stage_aborts_the_build(env, commands):
    _prepare(env)
    commands.fail_on = "all-gcc"
    with pytest.raises(common.command_error) as info:
        cross_environment(env).build()
    assert info.value.command == "make all-gcc -j4"
    assert not commands.find("glibc")
    assert commands.commands[-1] == "make all-gcc -j4"


def test_missing_build_dir(env, commands):
    with pytest.raises(common.precondition_error, match="binutils build folder does not exist"):
        cross_environment(env).build()
    assert commands.commands == []


def test_dry_run_skips_directory_checks(env, capsys):
    common.command_dry_run.set(True)
    cross_environment(env).build()
    output = capsys.readouterr().out
    assert "[crossgcc] Run command: make all-gcc -j4" in output
    assert "INSTALLING GCC" in output
    assert not os.path.exists(env.prefix)
