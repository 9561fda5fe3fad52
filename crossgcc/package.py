import datetime
import enum
import os
import psutil
from . import common
from .gcc_environment import environment


class compression(enum.StrEnum):
    gz = "gz"
    xz = "xz"
    zst = "zst"

    def compress_program(self) -> str:
        """The compressor passed to tar -I"""
        match self:
            case compression.gz:
                return "pigz -9"
            case compression.xz:
                memory_MB = psutil.virtual_memory().available // 1048576 + 3072
                return f"xz -9 -T 0 --memlimit={memory_MB}MiB"
            case compression.zst:
                return "zstd -19 -T0"


def package_name(target: str, major: int, source: str, ext: str, date: datetime.date | None = None) -> str:
    """Name of the toolchain archive

    Args:
        target (str): Target triple.
        major (int): Major GCC version.
        source (str): gnu or linaro.
        ext (str): Compression suffix.
        date (datetime.date | None, optional): Build date. Defaults to today in UTC.

    Returns:
        str: For example "aarch64-linux-gnu-8.x-gnu-20240301.tar.xz".
    """
    date = date or datetime.datetime.now(datetime.UTC).date()
    return f"{target}-{major}.x-{source}-{date:%Y%m%d}.tar.{ext}"


def package_path(env: environment, method: compression, date: datetime.date | None = None) -> str:
    return os.path.join(env.home, package_name(env.target, env.record.major, env.record.source, method, date))


def package_toolchain(env: environment, method: compression, date: datetime.date | None = None) -> str | None:
    """Archive the installed toolchain. A failure only warns because the toolchain on disk is still usable.

    Args:
        env (environment): The build environment.
        method (compression): The compression algorithm.
        date (datetime.date | None, optional): Build date used in the name. Defaults to today in UTC.

    Returns:
        str | None: Path of the archive, None if packaging failed.
    """
    path = package_path(env, method, date)
    common.header("PACKAGING TOOLCHAIN")
    print(f"Target file: {os.path.basename(path)}")
    try:
        with common.chdir_guard(env.home):
            common.run_command(f'tar -I "{method.compress_program()}" -cf {path} {env.target}')
    except common.command_error as e:
        common.warn(f"Packaging failed, the toolchain is left at {env.prefix}: {e}")
        common.remove_if_exists(path)
        return None
    return path


__all__ = ["compression", "package_name", "package_path", "package_toolchain"]

assert __name__ != "__main__", "Import this file instead of running it directly."
