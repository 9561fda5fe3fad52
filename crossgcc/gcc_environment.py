import os
import typing
from . import common
from .versions import arch, fetch_mode, kernel_arch, target_triple, version_record

# Build directories that are created fresh and optionally backed by tmpfs
build_dir_list: typing.Final[tuple[str, ...]] = ("build-glibc", "build-gcc", "build-binutils")

# Options shared by binutils, gcc and glibc
basic_option: typing.Final[tuple[str, ...]] = ("--disable-multilib", "--disable-werror")

binutils_option: typing.Final[tuple[str, ...]] = (
    "--enable-threads",
    "--enable-deterministic-archives",
    "--enable-new-dtags",
    "--disable-compressed-debug-sections",
    "--with-system-zlib",
    "--disable-gdb",
    "--enable-gold",
    "--enable-ld=default",
    "--enable-plugins",
    'CFLAGS="-O3"',
    'CXXFLAGS="-O3"',
)

gcc_option: typing.Final[tuple[str, ...]] = ("--enable-languages=c,c++", 'CFLAGS="-O3"', 'CXXFLAGS="-O3"')


def _default_build() -> str:
    return f"{os.uname().machine}-linux-gnu"


class environment:
    """Paths and settings of one toolchain build, derived once from the resolved versions"""

    record: version_record  # resolved source references
    arch: arch  # target architecture
    target: str  # target triple
    kernel_arch: str  # ARCH of the Linux headers
    build: str  # build platform
    home: str  # root of the build tree
    jobs: int  # make -j
    tmpfs: bool  # back the build directories with tmpfs
    shallow: bool  # clone with --depth=1
    update: bool  # update git clones before building
    sources_dir: str  # downloads and clones
    prebuilts_bin: str  # helper binaries
    patches_dir: str  # GCC source patches
    prefix: str  # toolchain install location
    lib_prefix: str  # target sysroot inside the install location
    bin_dir: str  # installed executables
    src_dir_list: dict[str, str]  # source tree of each component
    build_dir_list: dict[str, str]  # build directory of each component

    def __init__(
        self,
        record: version_record,
        target_arch: arch,
        home: str,
        jobs: int,
        tmpfs: bool = True,
        shallow: bool = True,
        update: bool = True,
        build: str | None = None,
    ) -> None:
        if jobs < 1:
            raise common.config_error(f"Invalid jobs: {jobs}.")
        self.record = record
        self.arch = target_arch
        self.target = target_triple(target_arch)
        self.kernel_arch = kernel_arch(target_arch)
        self.build = build or _default_build()
        self.home = os.path.abspath(home)
        self.jobs = jobs
        self.tmpfs = tmpfs
        self.shallow = shallow
        self.update = update
        self.sources_dir = os.path.join(self.home, "sources")
        self.prebuilts_bin = os.path.join(self.home, "prebuilts", "bin")
        self.patches_dir = os.path.join(self.home, "patches")
        self.prefix = os.path.join(self.home, self.target)
        self.lib_prefix = os.path.join(self.prefix, self.target)
        self.bin_dir = os.path.join(self.prefix, "bin")
        self.src_dir_list = {
            "binutils": os.path.join(self.home, "binutils"),
            "gcc": os.path.join(self.home, "gcc"),
            "glibc": os.path.join(self.home, f"glibc-{record.glibc_version}"),
            "linux": os.path.join(self.home, "linux"),
            "gmp": os.path.join(self.home, f"gmp-{record.gmp_version}"),
            "mpfr": os.path.join(self.home, f"mpfr-{record.mpfr_version}"),
            "mpc": os.path.join(self.home, f"mpc-{record.mpc_version}"),
            "isl": os.path.join(self.home, f"isl-{record.isl_version}"),
        }
        self.build_dir_list = {dir.removeprefix("build-"): os.path.join(self.home, dir) for dir in build_dir_list}

    @property
    def tarballs(self) -> bool:
        return self.record.mode == fetch_mode.tarball

    def installed_compiler(self) -> str:
        """Path of the final cross compiler"""
        return os.path.join(self.bin_dir, f"{self.target}-gcc")

    def register_in_env(self) -> None:
        """Put the install location in front of PATH"""
        os.environ["PATH"] = f"{self.bin_dir}:{os.environ['PATH']}"

    def enter_build_dir(self, lib: str) -> None:
        """Enter the build directory of a component, Linux headers are installed from the source tree

        Args:
            lib (str): The component to build.
        """
        if lib == "linux":
            common.chdir(self.src_dir_list["linux"])
            return
        assert lib in self.build_dir_list, f"{lib} has no build directory."
        build_dir = self.build_dir_list[lib]
        if not common.command_dry_run.get() and not os.path.isdir(build_dir):
            raise common.precondition_error(f"{lib} build folder does not exist!")
        common.chdir(build_dir)

    def configure(self, lib: str, *option: str) -> None:
        """Run the configure script of a component in the current directory

        Args:
            lib (str): The component to configure.
            option (tuple[str, ...]): Configure options.
        """
        options = " ".join(("", *option))
        common.run_command(f"{os.path.join(self.src_dir_list[lib], 'configure')}{options}")

    def make(self, *target: str) -> None:
        """Run make in the current directory

        Args:
            target (tuple[str, ...]): The make targets and variables.
        """
        targets = " ".join(("", *target))
        common.run_command(f"make{targets} -j{self.jobs}")


class cross_environment:
    """Bootstraps a glibc cross toolchain in the only order that works:
    binutils, kernel headers, stage 1 gcc, glibc, final gcc."""

    env: environment
    stage_list: typing.Final[tuple[str, ...]] = ("binutils", "headers", "gcc_stage1", "glibc", "gcc_final")
    stage_title: typing.Final[dict[str, str]] = {
        "binutils": "BUILDING BINUTILS",
        "headers": "MAKING LINUX HEADERS",
        "gcc_stage1": "MAKING GCC",
        "glibc": "MAKING GLIBC",
        "gcc_final": "INSTALLING GCC",
    }

    def __init__(self, env: environment) -> None:
        self.env = env

    def build_binutils(self) -> None:
        self.env.enter_build_dir("binutils")
        self.env.configure(
            "binutils", *basic_option, f"--target={self.env.target}", f"--prefix={self.env.prefix}", *binutils_option
        )
        self.env.make()
        self.env.make("install")

    def build_headers(self) -> None:
        self.env.enter_build_dir("linux")
        self.env.make(f"ARCH={self.env.kernel_arch}", f"INSTALL_HDR_PATH={self.env.lib_prefix}", "headers_install")

    def build_gcc_stage1(self) -> None:
        self.env.enter_build_dir("gcc")
        self.env.configure("gcc", *basic_option, f"--target={self.env.target}", f"--prefix={self.env.prefix}", *gcc_option)
        self.env.make("all-gcc")
        self.env.make("install-gcc")
        if self.env.arch == arch.x86_64:
            self.env.make("all-target-libgcc")
            self.env.make("install-target-libgcc")

    def build_glibc(self) -> None:
        lib_dir = os.path.join(self.env.lib_prefix, "lib")
        self.env.enter_build_dir("glibc")
        self.env.configure(
            "glibc",
            f"--prefix={self.env.lib_prefix}",
            f"--build={self.env.build}",
            f"--host={self.env.target}",
            f"--target={self.env.target}",
            f"--with-headers={os.path.join(self.env.lib_prefix, 'include')}",
            *basic_option,
            "libc_cv_forced_unwind=yes",
        )
        self.env.make("install-bootstrap-headers=yes", "install-headers")
        self.env.make("csu/subdir_lib")
        common.mkdir(lib_dir, False)
        common.run_command(f"install csu/crt1.o csu/crti.o csu/crtn.o {lib_dir}")
        # Placeholder libc.so so that libgcc can link before the real glibc exists
        common.run_command(
            f"{self.env.target}-gcc -nostdlib -nostartfiles -shared -x c /dev/null -o {os.path.join(lib_dir, 'libc.so')}"
        )
        common.touch(os.path.join(self.env.lib_prefix, "include", "gnu", "stubs.h"))
        if self.env.arch == arch.x86_64:
            self.env.make()
            self.env.make("install")
        else:
            self.env.enter_build_dir("gcc")
            self.env.make("all-target-libgcc")
            self.env.make("install-target-libgcc")

            self.env.enter_build_dir("glibc")
            self.env.make()
            self.env.make("install")

    def build_gcc_final(self) -> None:
        self.env.enter_build_dir("gcc")
        self.env.make("all")
        self.env.make("install")

    def build(self) -> None:
        """Run every stage in order, the first failing command aborts the build"""
        for stage in self.stage_list:
            common.header(self.stage_title[stage])
            getattr(self, f"build_{stage}")()
        common.chdir(self.env.home)


__all__ = ["build_dir_list", "environment", "cross_environment"]

assert __name__ != "__main__", "Import this file instead of running it directly."
