import os
import typing
from . import common
from .gcc_environment import environment
from .versions import gcc_source


class artifact:
    """A source that has to be present locally before the build"""

    lib: str  # component name, the key of environment.src_dir_list
    url: str  # where to fetch it from
    file: str  # file or directory name under the sources directory
    branch: str | None  # branch to clone, None for tarballs
    member: str | None  # only extract this member of the archive and rename it to the component name

    def __init__(self, lib: str, url: str, file: str, branch: str | None = None, member: str | None = None) -> None:
        self.lib = lib
        self.url = url
        self.file = file
        self.branch = branch
        self.member = member

    @property
    def is_git(self) -> bool:
        return self.branch is not None

    def local_path(self, env: environment) -> str:
        return os.path.join(env.sources_dir, self.file)

    def check_exist(self, env: environment) -> bool:
        return os.path.exists(self.local_path(env))

    def __repr__(self) -> str:
        return f"artifact({self.lib!r}, {self.url!r})"


class helper:
    """A small tool built from source into prebuilts/bin"""

    url: str  # git repository
    step_list: tuple[str, ...]  # commands run inside the clone, formatted with prefix, bin and jobs

    def __init__(self, url: str, *step: str) -> None:
        self.url = url
        self.step_list = step


helper_list: typing.Final[dict[str, helper]] = {
    "txt2man": helper("https://github.com/mvertes/txt2man", "make prefix={prefix} install"),
    "axel": helper(
        "https://github.com/axel-download-accelerator/axel",
        "autoreconf -fiv",
        "./configure --prefix={prefix}",
        "make {jobs}",
        "make {jobs} install",
    ),
    "pigz": helper("https://github.com/madler/pigz", "make {jobs} pigz", "mv pigz {bin}"),
    "pxz": helper("https://github.com/krasCGQ/pxz", "make {jobs} pxz", "mv pxz {bin}"),
    "zstd": helper("https://github.com/facebook/zstd", "make {jobs} zstd", "mv programs/zstd {bin}"),
}

gcc_git_url: typing.Final[str] = "https://gcc.gnu.org/git/gcc.git"
binutils_git_url: typing.Final[str] = "https://sourceware.org/git/binutils-gdb"


def _exist_echo(lib: str) -> None:
    print(f"[crossgcc] Lib {lib} exists, skip download.")


def _clone_option(env: environment) -> str:
    return " --depth=1" if env.shallow else ""


def gcc_artifact(env: environment) -> artifact:
    """The GCC source for the resolved source and fetch mode

    Args:
        env (environment): The build environment.

    Returns:
        artifact: A git clone in git mode, otherwise the release archive.
    """
    record = env.record
    if not env.tarballs:
        # Linaro branches live in the same repository
        return artifact("gcc", gcc_git_url, "gcc", branch=record.gcc_ref)
    name = record.gcc_ref
    ext = record.gcc_tarball_ext
    if record.source == gcc_source.gnu:
        return artifact("gcc", f"https://mirrors.kernel.org/gnu/gcc/{name}/{name}.tar.{ext}", f"{name}.tar.{ext}")
    elif record.major >= 8:
        # ARM snapshots ship other GNU tools too, only the GCC member is extracted
        file = f"gcc-arm-src-snapshot-{name}"
        url = f"https://developer.arm.com/-/media/Files/downloads/gnu-a/{name}/srcrel/{file}.tar.{ext}"
        return artifact("gcc", url, f"{file}.tar.{ext}", member=file)
    else:
        file = f"gcc-{name}.tar.{ext}"
        return artifact("gcc", f"https://git.linaro.org/toolchain/gcc.git/snapshot/{file}", file)


def artifact_list(env: environment) -> list[artifact]:
    """Every source needed to build the toolchain

    Args:
        env (environment): The build environment.

    Returns:
        list[artifact]: The sources in download order.
    """
    record = env.record
    mpfr = f"mpfr-{record.mpfr_version}.tar.xz"
    gmp = f"gmp-{record.gmp_version}.tar.xz"
    mpc = f"mpc-{record.mpc_version}.tar.gz"
    glibc = f"glibc-{record.glibc_version}.tar.xz"
    isl = f"isl-{record.isl_version}.tar.xz"
    linux = f"linux-{record.linux_version}.tar.xz"
    linux_major = record.linux_version.split(".")[0]
    result = [
        artifact("mpfr", f"https://www.mpfr.org/mpfr-current/{mpfr}", mpfr),
        artifact("gmp", f"https://ftp.gnu.org/gnu/gmp/{gmp}", gmp),
        artifact("mpc", f"https://ftp.gnu.org/gnu/mpc/{mpc}", mpc),
        artifact("glibc", f"https://ftp.gnu.org/gnu/glibc/{glibc}", glibc),
        artifact("isl", f"https://libisl.sourceforge.io/{isl}", isl),
        artifact("linux", f"https://cdn.kernel.org/pub/linux/kernel/v{linux_major}.x/{linux}", linux),
    ]
    if env.tarballs:
        binutils = f"binutils-{record.binutils_ref}.tar.xz"
        result.append(artifact("binutils", f"https://ftp.gnu.org/gnu/binutils/{binutils}", binutils))
    else:
        result.append(artifact("binutils", binutils_git_url, "binutils", branch=record.binutils_ref))
    result.append(gcc_artifact(env))
    return result


def fetch_specific_artifact(env: environment, item: artifact) -> None:
    """Download or clone one artifact and check that it arrived

    Args:
        env (environment): The build environment.
        item (artifact): The artifact to fetch.

    Raises:
        fetch_error: Fetching failed or left nothing behind.
    """
    path = item.local_path(env)
    if item.is_git:
        command = f"git clone{_clone_option(env)} {item.url} {path} -b {item.branch}"
    else:
        command = f"axel -o {path} {item.url}"
    try:
        common.run_command(command, error_type=common.fetch_error)
    except BaseException:
        # Output of a failed or interrupted fetch must not pass the existence check of the next run
        common.remove_if_exists(path)
        common.remove_if_exists(f"{path}.st")
        raise
    if not common.command_dry_run.get() and not os.path.exists(path):
        raise common.fetch_error(command, 0, f"Fetching {item.lib} from {item.url} did not create {path}.")


def download(env: environment) -> None:
    """Fetch every missing artifact, artifacts already present are left untouched

    Args:
        env (environment): The build environment.
    """
    common.mkdir(env.sources_dir, False)
    for item in artifact_list(env):
        if item.check_exist(env):
            _exist_echo(item.lib)
            continue
        common.header(f"DOWNLOADING {item.lib.upper()}")
        fetch_specific_artifact(env, item)


def update(env: environment) -> None:
    """Fetch and force checkout the configured branches of the binutils and gcc clones

    Args:
        env (environment): The build environment.
    """
    if env.tarballs or not env.update:
        return
    common.header("UPDATING SOURCES")
    for item in filter(lambda x: x.is_git, artifact_list(env)):
        path = item.local_path(env)
        if not common.command_dry_run.get() and not os.path.isdir(path):
            raise common.precondition_error(f"{item.lib} did not get cloned properly!")
        start = f"origin/{item.branch}" if not env.shallow else "FETCH_HEAD"
        common.run_command(f"git -C {path} fetch{_clone_option(env)} origin {item.branch}", error_type=common.fetch_error)
        common.run_command(f"git -C {path} checkout -f {item.branch} || git -C {path} checkout -f -b {item.branch} {start}")


def extract(archive: str, dest: str, member: str | None = None) -> None:
    """Unpack an archive with the parallel decompressors

    Args:
        archive (str): The .tar.gz or .tar.xz archive.
        dest (str): The directory receiving the content of the archive's top level directory.
        member (str | None, optional): Only extract this top level member and rename it to dest. Defaults to None.
    """
    match archive.rsplit(".", 1)[-1]:
        case "gz":
            unpack = "pigz"
        case "xz":
            unpack = "pxz"
        case ext:
            raise common.config_error(f'Unknown archive type "{ext}" of "{archive}".')
    if member is None:
        common.mkdir(dest, False)
        common.run_command(f"{unpack} -d < {archive} | tar -xC {dest} --strip-components=1")
    else:
        parent = os.path.dirname(dest)
        common.run_command(f"{unpack} -d < {archive} | tar -xC {parent} {member}")
        common.remove_if_exists(dest)
        common.rename(os.path.join(parent, member), dest)


def extract_sources(env: environment) -> None:
    """Extract every downloaded archive into the root of the build tree"""
    common.header("EXTRACTING DOWNLOADED TARBALLS")
    for item in filter(lambda x: not x.is_git, artifact_list(env)):
        extract(item.local_path(env), env.src_dir_list[item.lib], item.member)


def link_sources(env: environment) -> None:
    """Link the git clones into the root of the build tree"""
    for item in filter(lambda x: x.is_git, artifact_list(env)):
        dest = env.src_dir_list[item.lib]
        if not os.path.exists(dest):
            common.symlink(item.local_path(env), dest)


def build_specific_helper(env: environment, name: str) -> None:
    """Clone, build and install one helper binary

    Args:
        env (environment): The build environment.
        name (str): The helper to build.
    """
    assert name in helper_list, f"Unknown helper: {name}"
    item = helper_list[name]
    source_dir = os.path.join(env.sources_dir, name)
    if not os.path.exists(source_dir):
        common.run_command(f"git clone --depth=1 {item.url} {source_dir}", error_type=common.fetch_error)
    common.run_command(f"git -C {source_dir} clean -fxdq")
    common.run_command(f"git -C {source_dir} pull", error_type=common.fetch_error)
    prefix = os.path.dirname(env.prebuilts_bin)
    with common.chdir_guard(source_dir):
        for step in item.step_list:
            common.run_command(step.format(prefix=prefix, bin=env.prebuilts_bin, jobs=f"-j{env.jobs}"))


def build_helpers(env: environment) -> None:
    """Build the download accelerator, the parallel compressors and txt2man when missing, then put them on PATH"""
    common.mkdir(env.prebuilts_bin, False)
    common.mkdir(env.sources_dir, False)
    for name in helper_list:
        if os.path.exists(os.path.join(env.prebuilts_bin, name)):
            continue
        common.header(f"BUILDING {name.upper()}")
        build_specific_helper(env, name)
    os.environ["PATH"] = f"{env.prebuilts_bin}:{os.environ['PATH']}"


__all__ = [
    "artifact",
    "helper",
    "helper_list",
    "gcc_artifact",
    "artifact_list",
    "fetch_specific_artifact",
    "download",
    "update",
    "extract",
    "extract_sources",
    "link_sources",
    "build_specific_helper",
    "build_helpers",
]

assert __name__ != "__main__", "Import this file instead of running it directly."
