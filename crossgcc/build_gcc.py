import argparse
import os
import time
from . import common
from . import download
from . import stage
from . import versions
from .gcc_environment import cross_environment, environment
from .package import compression, package_toolchain


class configure(common.basic_configure):
    arch: str | None  # target architecture
    source: str | None  # gnu or linaro
    version: str | None  # GCC version
    full_src: bool  # full clones instead of shallow ones
    jobs: int  # make -j
    no_tmpfs: bool  # do not build in tmpfs
    no_update: bool  # do not update the clones
    package: str | None  # compression of the toolchain archive
    tarballs: bool  # fetch binutils and gcc as release tarballs
    verbose: bool  # show the output of every command

    def __init__(
        self,
        home: str = os.getcwd(),
        arch: str | None = None,
        source: str | None = None,
        version: str | None = None,
        full_src: bool = False,
        jobs: int = (os.cpu_count() or 1) + 1,
        no_tmpfs: bool = False,
        no_update: bool = False,
        package: str | None = None,
        tarballs: bool = False,
        verbose: bool = False,
    ) -> None:
        super().__init__(home)
        self.arch = arch
        self.source = source
        self.version = version
        self.full_src = full_src
        self.jobs = jobs
        self.no_tmpfs = no_tmpfs
        self.no_update = no_update
        self.package = package
        self.tarballs = tarballs
        self.verbose = verbose

    def check(self) -> None:
        common._check_home(self.home)
        if self.jobs < 1:
            raise common.config_error(f"Invalid jobs: {self.jobs}.")
        if self.package is not None and self.package not in tuple(compression):
            raise common.config_error(f"Invalid compression {self.package} specified!")

    def resolve(self) -> versions.version_record:
        """Validate the settings and resolve the source references, nothing is touched on disk or network"""
        self.check()
        mode = versions.fetch_mode.tarball if self.tarballs else versions.fetch_mode.git
        return versions.resolve(self.source, self.version, mode, versions.parse_arch(self.arch))

    def make_environment(self, record: versions.version_record, tmpfs: bool) -> environment:
        return environment(
            record,
            versions.parse_arch(self.arch),
            self.home,
            self.jobs,
            tmpfs=tmpfs,
            shallow=not self.full_src,
            update=not self.no_update,
        )


def build_toolchain(env: environment, method: compression | None) -> str | None:
    """Run the whole pipeline, the first failing step aborts it

    Args:
        env (environment): The build environment.
        method (compression | None): Compression of the toolchain archive, None to skip packaging.

    Returns:
        str | None: Path of the toolchain archive if one was created.
    """
    common.chdir(env.home)
    stage.clean_up(env)
    download.build_helpers(env)
    download.download(env)
    download.extract_sources(env)
    download.update(env)
    download.link_sources(env)
    stage.setup_env(env)

    common.header("BUILDING TOOLCHAIN")
    with stage.tmpfs_mounts(env):
        cross_environment(env).build()

    return package_toolchain(env, method) if method else None


def _human_size(size: float) -> str:
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def report(env: environment, start: float, package_path: str | None) -> int:
    """Print the summary of the build

    Args:
        env (environment): The build environment.
        start (float): Start time of the script.
        package_path (str | None): The toolchain archive, if any.

    Returns:
        int: 0 if the final compiler is installed, otherwise 1.
    """
    compiler = env.installed_compiler()
    if not os.path.exists(compiler):
        common.header("BUILD FAILED")
        return 1

    common.header("BUILD SUCCESSFUL")
    print(f"{common.BOLD}Script duration:{common.RST} {common.format_time(int(time.time() - start))}")
    result = common.run_command(f"{compiler} --version", ignore_error=True, capture=True, echo=False)
    if result:
        first_line = next(iter(result.stdout.splitlines()), "")
        print(f"{common.BOLD}GCC version:{common.RST} {first_line}")
    if package_path and os.path.exists(package_path):
        print(f"{common.BOLD}File location:{common.RST} {package_path}")
        print(f"{common.BOLD}File size:{common.RST} {_human_size(os.path.getsize(package_path))}")
    else:
        print(f"{common.BOLD}Toolchain location:{common.RST} {env.prefix}")
    # Alert to script end
    print("\a", end="")
    return 0


def get_parser(default_config: configure) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossgcc",
        description="Build a gcc cross toolchain targeting glibc Linux.",
        epilog="Example: crossgcc -a arm64 -s linaro -v 8. "
        "A --dry-run only prints the commands and exits with 0 although no compiler is built.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    configure.add_argument(parser)
    group = parser.add_argument_group("required parameters")
    group.add_argument("-a", "--arch", type=str, help="The toolchain's target architecture.", choices=tuple(versions.arch))
    group.add_argument("-s", "--source", type=str, help="The GCC source (GNU official vs. Linaro fork).", choices=tuple(versions.gcc_source))
    group.add_argument("-v", "--version", type=str, help="The GCC version to build, 4 to 14 (9 and newer are GNU only).")
    group = parser.add_argument_group("optional parameters")
    group.add_argument("-f", "--full-src", action="store_true", help="Download full git repos instead of shallow clones.")
    group.add_argument("-j", "--jobs", type=int, help="The amount of threads to use.", default=default_config.jobs)
    group.add_argument(
        "-nt", "--no-tmpfs", action="store_true", help="Do not use tmpfs for building (useful if you don't have much RAM)."
    )
    group.add_argument(
        "-nu",
        "--no-update",
        action="store_true",
        help="Do not update the downloaded components before building (useful if you have slow internet).",
    )
    group.add_argument("-p", "--package", type=str, help="Compresses toolchain after build.", choices=tuple(compression))
    group.add_argument("-t", "--tarballs", action="store_true", help="Use tarballs for binutils and GCC.")
    group.add_argument(
        "-V", "--verbose", action="store_true", help="Make script print all output, not just errors and the ending information."
    )
    parser.add_argument("--dump", action="store_true", help="Print supported architectures and GCC versions and exit.")
    return parser


def main(argv: list[str] | None = None) -> int:
    start = time.time()
    default_config = configure()
    parser = get_parser(default_config)
    args = parser.parse_args(argv)
    if args.dump:
        versions.dump_support()
        return 0

    try:
        current_config = configure.parse_args(args)
        current_config.load_config(args)
        record = current_config.resolve()
        current_config.save_config(args)
    except common.config_error as e:
        common.error(str(e))
        parser.print_help()
        return 1

    common.command_echo.set(current_config.verbose)
    stage.install_signal_handlers()
    tmpfs = not current_config.no_tmpfs and stage.check_sudo()
    env = current_config.make_environment(record, tmpfs)
    method = compression(current_config.package) if current_config.package else None

    try:
        package_path = build_toolchain(env, method)
    except common.toolchain_error as e:
        common.error(str(e))
        common.header("BUILD FAILED")
        return 1
    except KeyboardInterrupt:
        common.error("Manually aborted!")
        return 130

    if common.command_dry_run.get():
        print("[crossgcc] Dry run finished, no toolchain was built.")
        return 0
    return report(env, start, package_path)


assert __name__ != "__main__", "Import this file instead of running it directly."
