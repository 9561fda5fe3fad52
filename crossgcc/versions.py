import dataclasses
import enum
import re
import typing
import packaging.version as version
from .common import config_error


class arch(enum.StrEnum):
    """Architectures the glibc toolchain can target"""

    arm = "arm"
    arm64 = "arm64"
    i686 = "i686"
    x86_64 = "x86_64"


class gcc_source(enum.StrEnum):
    """Where the GCC source comes from"""

    gnu = "gnu"  # GNU official
    linaro = "linaro"  # Linaro fork, ARM releases since 8.x


class fetch_mode(enum.StrEnum):
    """How binutils and GCC are fetched"""

    git = "git"  # shallow or full clone of a development branch
    tarball = "tarball"  # release archive


class default_version(enum.StrEnum):
    binutils_git = "binutils-2_42-branch"
    binutils_tar = "2.42"
    gmp = "6.3.0"
    mpfr = "4.2.1"
    mpc = "1.3.1"
    isl = "0.26"
    glibc = "2.39"
    linux = "6.7.7"


@dataclasses.dataclass(frozen=True)
class release:
    """One row of the version table, shared by git and tarball mode"""

    git_ref: str | None  # branch of the GCC repository
    tarball: str | None  # release archive name, None when no archive exists
    tarball_ext: str = "xz"
    binutils_git: str = default_version.binutils_git
    binutils_tar: str = default_version.binutils_tar
    glibc: str = default_version.glibc
    isl: str = default_version.isl
    rejection: str | None = None  # the key is known but never buildable


@dataclasses.dataclass(frozen=True)
class version_record:
    """Everything the pipeline needs to know about the sources, resolved once"""

    source: gcc_source
    major: int
    mode: fetch_mode
    gcc_ref: str  # branch in git mode, archive stem in tarball mode
    gcc_tarball_ext: str
    binutils_ref: str  # branch in git mode, release number in tarball mode
    glibc_version: str
    isl_version: str
    gmp_version: str
    mpfr_version: str
    mpc_version: str
    linux_version: str
    patch_id: str


_old_deps: typing.Final[dict[str, str]] = {"glibc": "2.27", "isl": "0.17.1"}

# (source, major) -> release. Both fetch modes read the same row so dependency overrides cannot drift apart.
version_table: typing.Final[dict[tuple[gcc_source, int], release]] = {
    (gcc_source.gnu, 4): release(
        "gcc-4_9-branch",
        "gcc-4.9.4",
        tarball_ext="gz",
        binutils_git="binutils-2_29-branch",
        binutils_tar="2.29.1",
        glibc="2.26",
        isl="0.17.1",
    ),
    (gcc_source.gnu, 5): release("gcc-5-branch", "gcc-5.5.0", **_old_deps),
    (gcc_source.gnu, 6): release("gcc-6-branch", "gcc-6.5.0"),
    (gcc_source.gnu, 7): release("gcc-7-branch", "gcc-7.5.0"),
    (gcc_source.gnu, 8): release("releases/gcc-8", "gcc-8.5.0"),
    (gcc_source.gnu, 9): release("releases/gcc-9", "gcc-9.5.0"),
    (gcc_source.gnu, 10): release("releases/gcc-10", "gcc-10.5.0"),
    (gcc_source.gnu, 11): release("releases/gcc-11", "gcc-11.4.0"),
    (gcc_source.gnu, 12): release("releases/gcc-12", "gcc-12.3.0"),
    (gcc_source.gnu, 13): release("releases/gcc-13", "gcc-13.2.0"),
    (gcc_source.gnu, 14): release("master", None),
    (gcc_source.linaro, 4): release("linaro-local/releases/linaro-4.9-2017.01", "linaro-4.9-2017.01", tarball_ext="gz", **_old_deps),
    (gcc_source.linaro, 5): release("linaro-local/gcc-5-integration-branch", "linaro-5.5-2017.10", tarball_ext="gz", **_old_deps),
    (gcc_source.linaro, 6): release("linaro-local/gcc-6-integration-branch", "linaro-snapshot-6.5-2018.11", tarball_ext="gz"),
    (gcc_source.linaro, 7): release("linaro-local/gcc-7-integration-branch", "linaro-snapshot-7.5-2019.11", tarball_ext="gz"),
    # ARM has taken the responsibility from Linaro since 8.x
    (gcc_source.linaro, 8): release("linaro-local/ARM/arm-8-branch", "8.3-2019.03"),
    (gcc_source.linaro, 9): release(None, None, rejection="There's no such thing as Linaro 9.x!"),
    (gcc_source.linaro, 10): release(None, None, rejection="There's no such thing as Linaro 10.x!"),
}

# arch -> (target triple, kernel header arch)
target_table: typing.Final[dict[arch, tuple[str, str]]] = {
    arch.arm: ("arm-linux-gnueabi", "arm"),
    arch.arm64: ("aarch64-linux-gnu", "arm64"),
    arch.i686: ("i686-linux-gnu", "x86"),
    arch.x86_64: ("x86_64-linux-gnu", "x86"),
}


E = typing.TypeVar("E", bound=enum.StrEnum)


def _enum_value(enum_type: type[E], value: str, what: str) -> E:
    try:
        return enum_type(value)
    except ValueError:
        choices = ", ".join(enum_type)
        raise config_error(f"Absent or invalid {what} specified! Possible values: {choices}.")


def parse_arch(value: str | None) -> arch:
    return _enum_value(arch, value or "", "arch")


def parse_source(value: str | None) -> gcc_source:
    return _enum_value(gcc_source, value or "", "GCC source")


def parse_major(value: str | int | None) -> int:
    """Get the major GCC version from user input such as "8", "12.1" or 13

    Args:
        value (str | int | None): The version given by the user.

    Raises:
        config_error: The version is absent or cannot be parsed.

    Returns:
        int: The major version.
    """
    try:
        return version.Version(str(value)).major
    except version.InvalidVersion:
        raise config_error(f'Absent or invalid GCC version "{value}" specified!')


def target_triple(target_arch: arch) -> str:
    return target_table[target_arch][0]


def kernel_arch(target_arch: arch) -> str:
    """The ARCH value for the Linux headers_install target, i686 and x86_64 both use x86"""
    return target_table[target_arch][1]


def patch_id(major: int) -> str:
    """Choose the source patch that fixes the host build of a GCC release

    Args:
        major (int): The major GCC version.

    Returns:
        str: The patch name under patches/ without the .patch suffix.
    """
    if major == 4:
        # GCC 4.9 (ARM/i686): error: 'SIGSEGV' was not declared in this scope
        return "942-asan-fix-missing-include-signal-h"
    elif 6 <= major <= 8:
        # GCC 6-8 (i686): error: 'PATH_MAX' undeclared here (not in a function)
        return "GCC_6-8"
    elif major == 9:
        return "GCC_9"
    else:
        return "GCC_10_up"


def resolve(
    source: gcc_source | str, gcc_version: str | int, mode: fetch_mode | str = fetch_mode.git, target_arch: arch | str | None = None
) -> version_record:
    """Resolve the exact source references for a (source, version, mode) triple

    Args:
        source (gcc_source | str): gnu or linaro.
        gcc_version (str | int): The GCC version, only the major part is used.
        mode (fetch_mode | str, optional): Fetch from git or from release tarballs. Defaults to git.
        target_arch (arch | str | None, optional): Target architecture, used to reject combinations known
            to mis-bootstrap. Defaults to None.

    Raises:
        config_error: The combination is unsupported.

    Returns:
        version_record: The complete record.
    """
    source = parse_source(source)
    mode = _enum_value(fetch_mode, mode, "fetch mode")
    major = parse_major(gcc_version)
    if target_arch is not None and parse_arch(target_arch) == arch.x86_64 and major <= 5:
        raise config_error("Will not build, use newer version instead")

    row = version_table.get((source, major))
    if row is None:
        raise config_error("Absent or invalid GCC version or source specified!")
    if row.rejection:
        raise config_error(row.rejection)

    if mode == fetch_mode.git:
        gcc_ref, binutils_ref = row.git_ref, row.binutils_git
    else:
        gcc_ref, binutils_ref = row.tarball, row.binutils_tar
        if gcc_ref is None:
            raise config_error(
                f"GCC {major} is currently a WIP so there is no tarball to download! Either use the git repo or choose a new version..."
            )
    assert gcc_ref, f"The table has no GCC reference for {source}:{major} in {mode} mode."

    return version_record(
        source=source,
        major=major,
        mode=mode,
        gcc_ref=gcc_ref,
        gcc_tarball_ext=row.tarball_ext,
        binutils_ref=binutils_ref,
        glibc_version=row.glibc,
        isl_version=row.isl,
        gmp_version=default_version.gmp,
        mpfr_version=default_version.mpfr,
        mpc_version=default_version.mpc,
        linux_version=default_version.linux,
        patch_id=patch_id(major),
    )


def supported() -> list[tuple[gcc_source, int]]:
    """All keys of the version table that can be built in at least one mode"""
    return [key for key, row in version_table.items() if not row.rejection]


def check_table() -> list[str]:
    """Check the version table for holes and inconsistent rows

    Returns:
        list[str]: Descriptions of every problem found, empty when the table is consistent.
    """
    problem_list: list[str] = []
    for (source, major), row in version_table.items():
        key = f"{source}:{major}"
        if row.rejection:
            if row.git_ref or row.tarball:
                problem_list.append(f"{key} is rejected but still carries references.")
            continue
        if not row.git_ref or re.search(r"\s", row.git_ref):
            problem_list.append(f"{key} has an invalid git ref {row.git_ref!r}.")
        elif row.git_ref != "master" and str(major) not in row.git_ref:
            problem_list.append(f"{key} git ref {row.git_ref!r} does not name GCC {major}.")
        if row.tarball is not None:
            match = re.search(r"(\d+)\.\d", row.tarball)
            if not match or int(match.group(1)) != major:
                problem_list.append(f"{key} tarball {row.tarball!r} is not a GCC {major} release.")
            if "/" in row.tarball:
                problem_list.append(f"{key} tarball {row.tarball!r} looks like a git branch.")
        if row.tarball_ext not in ("gz", "xz"):
            problem_list.append(f"{key} has an unknown tarball extension {row.tarball_ext!r}.")
        for mode in fetch_mode:
            if mode == fetch_mode.tarball and row.tarball is None:
                continue
            record = resolve(source, major, mode)
            for field in dataclasses.fields(record):
                if getattr(record, field.name) in ("", None):
                    problem_list.append(f"{key} resolves to an empty {field.name} in {mode} mode.")
    return problem_list


def dump_support() -> None:
    """Print every supported combination"""
    print("Arch support:")
    for target_arch, (triple, _) in target_table.items():
        print(f"\t{target_arch} ({triple})")
    print("GCC support:")
    for source, major in supported():
        row = version_table[(source, major)]
        tarball = row.tarball or "git only"
        print(f"\t{source} {major}: {row.git_ref}, {tarball}")


__all__ = [
    "arch",
    "gcc_source",
    "fetch_mode",
    "default_version",
    "release",
    "version_record",
    "version_table",
    "target_table",
    "parse_arch",
    "parse_source",
    "parse_major",
    "target_triple",
    "kernel_arch",
    "patch_id",
    "resolve",
    "supported",
    "check_table",
    "dump_support",
]

assert __name__ != "__main__", "Import this file instead of running it directly."
