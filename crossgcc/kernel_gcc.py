"""Build compact GCC and binutils toolchains for exclusively building kernels.

Bare-metal targets produce compressed kernel images that are approximately 1 MiB
smaller than the ones built by Linux-targeted toolchains. The toolchains are built
with segher's buildall scripts into <home>/gcc/<target>-<gcc version>, then the
host libraries GCC needs are bundled so that the result can be moved to another machine.
"""
import argparse
import fnmatch
import os
import re
import typing
import packaging.version as version
from . import common

latest_stable_gcc: typing.Final[str] = "9.2.0"
latest_stable_binutils: typing.Final[str] = "2.32"
buildall_url: typing.Final[str] = "git://git.infradead.org/users/segher/buildall.git"

default_target_list: typing.Final[tuple[str, ...]] = ("aarch64-elf", "arm-eabi")
short_target_list: typing.Final[tuple[str, ...]] = ("arm", "arm64", "powerpc", "powerpc64", "s390", "x86_64")
target_pattern_list: typing.Final[tuple[str, ...]] = ("*-*eabi*", "*-elf", "*-none", "*-aout", "*-rtems*", "*-linux*")
build_mode_list: typing.Final[tuple[str, ...]] = ("binutils", "gcc", "toolchain")
bundled_lib_list: typing.Final[tuple[str, ...]] = ("isl", "gmp", "mpc", "mpfr")


def parse_targets(target_list: list[str]) -> list[str]:
    """Expand and validate the targets given on the command line

    Args:
        target_list (list[str]): Targets, "all" or nothing for the default bare-metal pair.

    Raises:
        config_error: A target is not supported.

    Returns:
        list[str]: Targets to build, in order and without duplicates.
    """
    result: list[str] = []
    for target in target_list or ["all"]:
        if target == "all":
            expanded = list(default_target_list)
        elif target in short_target_list or any(fnmatch.fnmatchcase(target, pattern) for pattern in target_pattern_list):
            expanded = [target]
        else:
            raise common.config_error(f'Target "{target}" is not supported.')
        result += [item for item in expanded if item not in result]
    return result


def _check_version(name: str, value: str, allow_latest: bool) -> None:
    if allow_latest and value == "latest":
        return
    try:
        version.Version(value)
    except version.InvalidVersion:
        raise common.config_error(f'Invalid {name} version "{value}".')


def find_lib(lib: str, ldconfig_output: str) -> str | None:
    """Find the path of a shared library in the output of ldconfig -p

    Args:
        lib (str): Library name without the lib prefix, for example "gmp".
        ldconfig_output (str): Output of ldconfig -p.

    Returns:
        str | None: Path of the first match, None if the library is not installed.
    """
    pattern = re.compile(rf"\blib{re.escape(lib)}\.so\.")
    for line in ldconfig_output.splitlines():
        if "=>" in line and pattern.search(line.split("=>")[0]):
            return line.split("=>")[-1].strip()
    return None


def elf_executable_list(file_output: str) -> list[str]:
    """Pick the dynamically linked ELF executables from the output of file(1)

    Args:
        file_output (str): One "path: description" line per file.

    Returns:
        list[str]: Paths of the executables.
    """
    result: list[str] = []
    for line in file_output.splitlines():
        path, sep, description = line.partition(": ")
        if sep and re.search(r"ELF .+ interpreter", description):
            result.append(path)
    return result


def origin_rpath(exe: str, lib_dir: str) -> str:
    """The $ORIGIN relative rpath that lets exe find the libraries in lib_dir"""
    return os.path.join("$ORIGIN", os.path.relpath(lib_dir, os.path.dirname(exe)))


class configure(common.basic_configure):
    targets: list[str]  # targets to build
    build_mode: str  # binutils, gcc or toolchain
    gcc_version: str  # GCC release or "latest"
    binutils_version: str  # binutils release
    jobs: int  # make -j

    def __init__(
        self,
        home: str = os.environ.get("TC_FOLDER", os.getcwd()),
        targets: list[str] | None = None,
        build_mode: str = "toolchain",
        gcc_version: str = os.environ.get("GCC_VERSION", latest_stable_gcc),
        binutils_version: str = os.environ.get("BINUTILS_VERSION", latest_stable_binutils),
        jobs: int = os.cpu_count() or 1,
    ) -> None:
        super().__init__(home)
        self.targets = parse_targets(targets or [])
        self.build_mode = build_mode
        self.gcc_version = gcc_version
        self.binutils_version = binutils_version
        self.jobs = jobs

    def check(self) -> None:
        common._check_home(self.home)
        if self.build_mode not in build_mode_list:
            raise common.config_error(f"Invalid build mode {self.build_mode}.")
        if self.jobs < 1:
            raise common.config_error(f"Invalid jobs: {self.jobs}.")
        _check_version("GCC", self.gcc_version, True)
        _check_version("binutils", self.binutils_version, False)


class kernel_environment:
    config: configure
    gcc_dir: str  # everything is contained in this folder
    scripts_dir: str  # buildall clone
    gcc_src: str  # GCC source tree
    binutils_src: str  # binutils source tree

    def __init__(self, config: configure) -> None:
        self.config = config
        self.gcc_dir = os.path.join(config.home, "gcc")
        self.scripts_dir = os.path.join(self.gcc_dir, "build")
        self.gcc_src = os.path.join(self.scripts_dir, f"gcc-{config.gcc_version}")
        self.binutils_src = os.path.join(self.scripts_dir, f"binutils-{config.binutils_version}")

    def prefix(self, target: str) -> str:
        return os.path.join(self.gcc_dir, f"{target}-{self.config.gcc_version}")

    def download(self) -> None:
        """Fetch buildall, GCC and binutils, and build the timer program of buildall"""
        common.mkdir(self.gcc_dir, False)
        print("[crossgcc] Downloading build scripts...")
        if not os.path.exists(self.scripts_dir):
            common.run_command(f"git -C {self.gcc_dir} clone {buildall_url} build", error_type=common.fetch_error)

        with common.chdir_guard(self.scripts_dir):
            gcc_version = self.config.gcc_version
            print(f"[crossgcc] Downloading GCC {gcc_version}...")
            if gcc_version == "latest":
                # Always update the snapshot
                common.remove_if_exists(self.gcc_src)
                common.run_command(
                    "curl -LSs https://github.com/gcc-mirror/gcc/archive/master.tar.gz | tar -xzf -", error_type=common.fetch_error
                )
                common.rename("gcc-master", self.gcc_src)
            elif not os.path.exists(self.gcc_src):
                name = os.path.basename(self.gcc_src)
                common.run_command(
                    f"curl -LSs https://mirrors.kernel.org/gnu/gcc/{name}/{name}.tar.xz | tar -xJf -", error_type=common.fetch_error
                )

            print(f"[crossgcc] Downloading binutils {self.config.binutils_version}...")
            if not os.path.exists(self.binutils_src):
                name = os.path.basename(self.binutils_src)
                common.run_command(
                    f"curl -LSs https://mirrors.kernel.org/gnu/binutils/{name}.tar.xz | tar -xJf -", error_type=common.fetch_error
                )

            print("[crossgcc] Compiling visual timer program...")
            if not os.path.exists("timert"):
                common.run_command(f"make -j{self.config.jobs}")

    def write_config(self, target: str) -> str:
        """Write the buildall config for a target

        Returns:
            str: Content of the config.
        """
        content = (
            f'BINUTILS_SRC="{self.binutils_src}"\n'
            "CHECKING=release\n"
            "ECHO=/bin/echo\n"
            f'GCC_SRC="{self.gcc_src}"\n'
            f"MAKEOPTS=-j{self.config.jobs}\n"
            f'PREFIX="{self.prefix(target)}"\n'
            'EXTRA_BINUTILS_CONF="--enable-lto --enable-gold --enable-deterministic-archives --enable-plugins --enable-relro --disable-gdb"\n'
            'EXTRA_GCC_CONF="--with-isl --enable-lto --enable-plugin"\n'
        )
        if not common.command_dry_run.get():
            with open(os.path.join(self.scripts_dir, "config"), "w") as file:
                file.write(content)
        return content

    def bundle_libs(self, target: str) -> list[str]:
        """Copy the host libraries GCC links against into the toolchain

        Returns:
            list[str]: File names of the bundled libraries.

        Raises:
            precondition_error: A library is not installed on the host.
        """
        lib_dir = os.path.join(self.prefix(target), "lib")
        result = common.run_command("ldconfig -p", capture=True, echo=False)
        ldconfig_output = result.stdout if result else ""
        name_list: list[str] = []
        print(f"[crossgcc] Copying libraries for {target} toolchain...")
        for lib in bundled_lib_list:
            path = find_lib(lib, ldconfig_output)
            if path is None:
                if common.command_dry_run.get():
                    continue
                raise common.precondition_error(f"Cannot find the shared library of {lib} on this host.")
            print(f"  - {path}")
            common.copy(path, os.path.join(lib_dir, os.path.basename(path)), follow_symlinks=True)
            name_list.append(os.path.basename(path))
        return name_list

    def strip_and_set_rpath(self, target: str, lib_name_list: list[str]) -> None:
        """Strip every executable and point the ones using bundled libraries at <prefix>/lib.
        Both walk the same files so they are done in one pass."""
        prefix = self.prefix(target)
        lib_dir = os.path.join(prefix, "lib")
        lib_regex = re.compile("|".join(map(re.escape, lib_name_list))) if lib_name_list else None
        print(f"[crossgcc] Stripping {target} toolchain and setting library load paths...")
        result = common.run_command(f"find {prefix} -type f -exec file {{}} +", capture=True, echo=False)
        for exe in elf_executable_list(result.stdout if result else ""):
            print(f"  - strip: {exe}")
            common.run_command(f"strip {exe}", echo=False)
            dynamic = common.run_command(f"readelf -d {exe}", capture=True, echo=False)
            if lib_regex and dynamic and lib_regex.search(dynamic.stdout):
                print(f"  - rpath: {exe}")
                common.run_command(f"patchelf --set-rpath '{origin_rpath(exe, lib_dir)}' {exe}", echo=False)

    def build_target(self, target: str) -> None:
        prefix = self.prefix(target)
        self.write_config(target)
        # Artifacts of a previous build can cause a false failure
        common.remove_if_exists(os.path.join(self.scripts_dir, target))
        common.remove_if_exists(prefix)

        print(f"[crossgcc] Building {target} toolchain...")
        with common.chdir_guard(self.scripts_dir):
            common.run_command(f"./build --{self.config.build_mode} {target}")
        lib_name_list = self.bundle_libs(target)
        self.strip_and_set_rpath(target, lib_name_list)
        print(f"[crossgcc] Finished building {target} toolchain!")
        print(f"Path: {prefix}")

    def build(self) -> None:
        self.download()
        for target in self.config.targets:
            self.build_target(target)


def main(argv: list[str] | None = None) -> int:
    default_config = configure()
    parser = argparse.ArgumentParser(
        prog="crossgcc-kernel",
        description="Build GCC and binutils for exclusively building kernels.",
        epilog="Example: crossgcc-kernel aarch64-elf arm-eabi",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    configure.add_argument(parser)
    parser.add_argument("targets", nargs="*", help='Targets to build, "all" builds aarch64-elf and arm-eabi.', default=[])
    group = parser.add_mutually_exclusive_group()
    for mode in build_mode_list:
        group.add_argument(f"--{mode}", dest="build_mode", action="store_const", const=mode, help=f"Only build {mode}.")
    parser.set_defaults(build_mode=default_config.build_mode)
    parser.add_argument("--gcc-version", type=str, help='GCC release to build, or "latest".', default=default_config.gcc_version)
    parser.add_argument(
        "--binutils-version", type=str, help="Binutils release to build.", default=default_config.binutils_version
    )
    parser.add_argument("-j", "--jobs", type=int, help="Number of concurrent jobs.", default=default_config.jobs)
    args = parser.parse_args(argv)

    try:
        current_config = configure.parse_args(args)
        current_config.load_config(args)
        current_config.check()
        current_config.save_config(args)
    except common.config_error as e:
        common.error(str(e))
        return 1

    try:
        kernel_environment(current_config).build()
    except common.toolchain_error as e:
        common.error(str(e))
        return 1
    except KeyboardInterrupt:
        common.error("Manually aborted!")
        return 130
    return 0


assert __name__ != "__main__", "Import this file instead of running it directly."
