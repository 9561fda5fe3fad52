import glob
import os
import signal
from . import common
from .gcc_environment import environment


def check_sudo() -> bool:
    """Check whether sudo can be used to mount tmpfs

    Returns:
        bool: Whether sudo is available.
    """
    print("\nChecking if sudo is available, please enter your password if a prompt appears!")
    if common.run_command("sudo -v", ignore_error=True, echo=False) is None and not common.command_dry_run.get():
        common.warn("Sudo is not available! Disabling the option for tmpfs...")
        return False
    return True


def unmount_tmpfs(env: environment) -> None:
    """Unmount the tmpfs of every build directory, directories that are not mounted are ignored"""
    if env.tmpfs:
        for build_dir in env.build_dir_list.values():
            common.run_command(f"sudo umount -f {build_dir} 2>/dev/null", ignore_error=True, echo=False)


class tmpfs_mounts:
    """Mount tmpfs over the build directories in the with block and always unmount them on exit,
    including when a stage fails or the build is interrupted"""

    env: environment
    mounted: bool

    def __init__(self, env: environment) -> None:
        self.env = env
        self.mounted = False

    def __enter__(self) -> "tmpfs_mounts":
        if self.env.tmpfs:
            self.mounted = True
            try:
                for build_dir in self.env.build_dir_list.values():
                    common.run_command(f"sudo mount -t tmpfs -o rw none {build_dir}")
            except BaseException:
                # __exit__ is not called when __enter__ raises
                self.__exit__()
                raise
        return self

    def __exit__(self, *_) -> None:
        if self.mounted:
            # A busy tmpfs cannot be unmounted, leave the build directories first
            common.chdir(self.env.home)
            unmount_tmpfs(self.env)
            self.mounted = False


def _raise_interrupt(signum: int, _) -> None:
    raise KeyboardInterrupt(f"Received signal {signum}")


def install_signal_handlers() -> None:
    """Turn SIGTERM into KeyboardInterrupt so that it unwinds through the same exit handlers as SIGINT"""
    signal.signal(signal.SIGTERM, _raise_interrupt)


def stale_artifact_list(env: environment) -> list[str]:
    """Artifacts of a previous run that must not exist before a new build

    Args:
        env (environment): The build environment.

    Returns:
        list[str]: The offending paths.
    """
    path_list = [
        env.src_dir_list["binutils"],
        env.src_dir_list["gcc"],
        env.src_dir_list["linux"],
        *env.build_dir_list.values(),
        env.prefix,
    ]
    result = [path for path in path_list if os.path.lexists(path)]
    result += sorted(glob.glob(os.path.join(env.home, "*.tar.*")))
    return result


def check_clean(env: environment) -> None:
    """Check that the clean up left nothing behind

    Raises:
        stale_artifact_error: Some artifacts survived.
    """
    if common.command_dry_run.get():
        return
    stale_list = stale_artifact_list(env)
    if stale_list:
        raise common.stale_artifact_error(stale_list)
    print("Clean up successful!")


def clean_up(env: environment) -> None:
    """Remove everything a previous run created except downloads, prebuilts and patches

    Args:
        env (environment): The build environment.
    """
    common.header("CLEANING UP")
    common.chdir(env.home)
    unmount_tmpfs(env)
    if os.path.isdir(os.path.join(env.home, ".git")):
        common.run_command(f"git -C {env.home} clean -fxdq -e sources -e prebuilts -e patches")
    for entry in os.scandir(env.home):
        if entry.is_symlink():
            common.remove(entry.path)
    for path in (*env.src_dir_list.values(), *env.build_dir_list.values(), env.prefix):
        common.remove_if_exists(path)
    for package in glob.glob(os.path.join(env.home, "*.tar.*")):
        common.remove(package)
    check_clean(env)


def apply_patch(env: environment) -> None:
    """Apply the patch that fixes the host build of the selected GCC release.
    Patches are looked up in <home>/patches, a missing patch only warns."""
    patch_path = os.path.join(env.patches_dir, f"{env.record.patch_id}.patch")
    if not common.command_dry_run.get() and not os.path.isfile(patch_path):
        common.warn(f'Cannot find GCC patch "{patch_path}", building the unpatched source.')
        return
    with common.chdir_guard(env.src_dir_list["gcc"]):
        # Clones kept with --no-update are already patched
        if common.run_command(f"patch -Rp1 -sf --dry-run < {patch_path}", ignore_error=True, echo=False):
            print(f"[crossgcc] Patch {env.record.patch_id} is already applied, skip.")
            return
        common.run_command(f"patch -Np1 < {patch_path}")


def setup_env(env: environment) -> None:
    """Create the build directories, link the GCC prerequisites into the GCC tree and patch it

    Args:
        env (environment): The build environment.

    Raises:
        precondition_error: The GCC source is missing.
    """
    env.register_in_env()
    gcc_dir = env.src_dir_list["gcc"]
    if not common.command_dry_run.get() and not os.path.isdir(gcc_dir):
        raise common.precondition_error("GCC source is missing! Please check your connection and rerun the script!")

    for build_dir in env.build_dir_list.values():
        common.mkdir(build_dir)

    for lib in ("mpfr", "gmp", "mpc", "isl"):
        common.symlink(env.src_dir_list[lib], os.path.join(gcc_dir, lib))

    apply_patch(env)


__all__ = [
    "check_sudo",
    "unmount_tmpfs",
    "tmpfs_mounts",
    "install_signal_handlers",
    "stale_artifact_list",
    "check_clean",
    "clean_up",
    "apply_patch",
    "setup_env",
]

assert __name__ != "__main__", "Import this file instead of running it directly."
