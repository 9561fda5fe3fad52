import functools
import os
import shutil
import json
import argparse
import inspect
import itertools
import subprocess
from collections.abc import Callable
from typing import ParamSpec, TypeVar

# Terminal colors
BOLD = "\033[1m"
RED = "\033[01;31m"
RST = "\033[0m"
YLW = "\033[01;33m"


class toolchain_error(RuntimeError):
    """Base class of every error that aborts a toolchain build"""


class config_error(toolchain_error):
    """Invalid or unsupported configuration, detected before any work is done"""


class command_error(toolchain_error):
    """An external command exited with a non-zero status"""

    command: str
    returncode: int

    def __init__(self, command: str, returncode: int, message: str | None = None) -> None:
        self.command = command
        self.returncode = returncode
        super().__init__(message or f'Command "{command}" failed with errno={returncode}.')


class fetch_error(command_error):
    """Downloading, cloning or updating a source failed"""


class precondition_error(toolchain_error):
    """The filesystem is not in the state a stage requires"""


class stale_artifact_error(precondition_error):
    """Artifacts of a previous run survived the clean up"""

    paths: list[str]

    def __init__(self, paths: list[str]) -> None:
        self.paths = paths
        super().__init__(
            "Clean up failed! Aborting. Try checking that you have proper permissions to delete files: " + ", ".join(paths)
        )


class command_dry_run:
    """Whether commands are only echoed instead of executed"""

    _dry_run: bool = False

    @classmethod
    def get(cls) -> bool:
        return cls._dry_run

    @classmethod
    def set(cls, dry_run: bool) -> None:
        cls._dry_run = dry_run


class command_echo:
    """Whether the output of child processes is shown (--verbose)"""

    _verbose: bool = True

    @classmethod
    def get(cls) -> bool:
        return cls._verbose

    @classmethod
    def set(cls, verbose: bool) -> None:
        cls._verbose = verbose


P = ParamSpec("P")
R = TypeVar("R")


def _support_dry_run(echo_fn: Callable[..., str | None] | None = None) -> Callable[[Callable[P, R]], Callable[P, R | None]]:
    """Only echo the action instead of running it, according to the dry_run argument or the global command_dry_run state.
       The global state is used when fn has no dry_run argument or it is None.

    Args:
        echo_fn (Callable[..., str | None] | None, optional): Returns the message to show, or None to show nothing.
            Every parameter of echo_fn must be a parameter of fn. Defaults to no message.
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R | None]:
        signature = inspect.signature(fn)

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
            bound_args = signature.bind(*args, **kwargs)
            bound_args.apply_defaults()
            if echo_fn:
                param_list: list = []
                for key in inspect.signature(echo_fn).parameters.keys():
                    assert (
                        key in bound_args.arguments
                    ), f"The param {key} of echo_fn is not in the param list of fn. Every param of echo_fn should be able to find in the param list of fn."
                    param_list.append(bound_args.arguments[key])
                echo = echo_fn(*param_list)
                if echo is not None:
                    print(echo)
            dry_run: bool | None = bound_args.arguments.get("dry_run")
            assert isinstance(dry_run, bool | None), f"The param dry_run must be a bool or None."
            if dry_run is None and command_dry_run.get() or dry_run:
                return
            return fn(*bound_args.args, **bound_args.kwargs)

        return wrapper

    return decorator


@_support_dry_run(lambda command, echo: f"[crossgcc] Run command: {command}" if echo else None)
def run_command(
    command: str,
    ignore_error: bool = False,
    capture: bool = False,
    echo: bool = True,
    error_type: type[command_error] = command_error,
    dry_run: bool | None = None,
) -> subprocess.CompletedProcess[str] | None:
    """Run a shell command. Unless errors are ignored, a failing command raises error_type.

    Args:
        command (str): The command to run.
        ignore_error (bool, optional): Whether to ignore a non-zero exit status. Defaults to False.
        capture (bool, optional): Whether to capture stdout and stderr. Defaults to False.
        echo (bool, optional): Whether to print the command and error notes. Defaults to True.
        error_type (type[command_error], optional): The exception raised on failure. Defaults to command_error.
        dry_run (bool | None, optional): Only echo the command without running it. Defaults to None.

    Raises:
        command_error: The command failed and ignore_error is False.

    Returns:
        None | subprocess.CompletedProcess[str]: The result when the command succeeded, otherwise None.
    """

    if capture:
        pipe = subprocess.PIPE
    elif echo and command_echo.get():
        pipe = None
    else:
        pipe = subprocess.DEVNULL
    try:
        result = subprocess.run(command, stdout=pipe, stderr=pipe, shell=True, check=True, text=True)
    except subprocess.CalledProcessError as e:
        if not ignore_error:
            raise error_type(command, e.returncode)
        elif echo:
            print(f'[crossgcc] Command "{command}" failed with errno={e.returncode}, but it is ignored.')
        return None
    return result


def header(title: str) -> None:
    """Print a red banner telling the user which step is running"""
    bar = "=" * len(title)
    print(f"\n{RED}===={bar}====\n==  {title}  ==\n===={bar}===={RST}\n")


def error(message: str) -> None:
    """Print an error in bold red"""
    print(f"\n{RED}{message}{RST}")


def warn(message: str) -> None:
    """Print a warning in bold yellow"""
    print(f"\n{YLW}{message}{RST}\n")


@_support_dry_run(lambda path: f"[crossgcc] Create directory {path}.")
def mkdir(path: str, remove_if_exist=True, dry_run: bool | None = None) -> None:
    """Create a directory

    Args:
        path (str): The directory to create.
        remove_if_exist (bool, optional): Remove an existing directory of the same name first. Defaults to True.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    if remove_if_exist and os.path.exists(path):
        shutil.rmtree(path)
    os.makedirs(path, exist_ok=True)


@_support_dry_run(lambda src, dst: f"[crossgcc] Copy {src} -> {dst}.")
def copy(src: str, dst: str, overwrite=True, follow_symlinks: bool = False, dry_run: bool | None = None) -> None:
    """Copy a file or a directory

    Args:
        src (str): The source path.
        dst (str): The destination path, its parent directory is created when missing.
        overwrite (bool, optional): Replace an existing destination. Defaults to True.
        follow_symlinks (bool, optional): Copy what a symlink points at instead of the link. Defaults to False.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    dir = os.path.dirname(dst)
    if dir != "":
        mkdir(dir, False)
    if not overwrite and os.path.exists(dst):
        return
    if os.path.isdir(src):
        if os.path.exists(dst):
            shutil.rmtree(dst)
        shutil.copytree(src, dst, not follow_symlinks)
    else:
        if os.path.lexists(dst):
            os.remove(dst)
        shutil.copyfile(src, dst, follow_symlinks=follow_symlinks)
        shutil.copymode(src, dst)


@_support_dry_run(lambda path: f"[crossgcc] Remove {path}.")
def remove(path: str, dry_run: bool | None = None) -> None:
    """Remove a path. Symlinks are removed themselves, never their targets.

    Args:
        path (str): The path to remove.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


@_support_dry_run(lambda path: f"[crossgcc] Remove {path} if path exists.")
def remove_if_exists(path: str, dry_run: bool | None = None) -> None:
    """Remove a path if it exists

    Args:
        path (str): The path to remove.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    if os.path.lexists(path):
        remove(path)


@_support_dry_run(lambda src, dst: f"[crossgcc] Link {dst} -> {src}.")
def symlink(src: str, dst: str, overwrite: bool = True, dry_run: bool | None = None) -> None:
    """Create a symbolic link dst pointing at src

    Args:
        src (str): The link target.
        dst (str): The link to create.
        overwrite (bool, optional): Replace an existing link of the same name. Defaults to True.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    if os.path.islink(dst):
        if not overwrite:
            return
        os.remove(dst)
    os.symlink(src, dst)


@_support_dry_run(lambda path: f"[crossgcc] Enter directory {path}.")
def chdir(path: str, dry_run: bool | None = None) -> str:
    """Change the working directory

    Args:
        path (str): The directory to enter.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.

    Returns:
        str: The previous working directory.
    """
    cwd = os.getcwd()
    os.chdir(path)
    return cwd


@_support_dry_run(lambda src, dst: f"[crossgcc] Rename {src} -> {dst}.")
def rename(src: str, dst: str, dry_run: bool | None = None) -> None:
    """Rename a path

    Args:
        src (str): The source path.
        dst (str): The destination path.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    os.rename(src, dst)


@_support_dry_run(lambda path: f"[crossgcc] Create empty file {path}.")
def touch(path: str, dry_run: bool | None = None) -> None:
    """Create an empty file, creating its directory first

    Args:
        path (str): The file to create.
        dry_run (bool | None, optional): Only echo the action without running it. Defaults to None.
    """
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "a"):
        pass


class chdir_guard:
    """Enter a directory in the with block and return to the previous one on exit"""

    path: str
    cwd: str
    dry_run: bool | None

    def __init__(self, path: str, dry_run: bool | None = None) -> None:
        self.path = path
        self.dry_run = dry_run
        self.cwd = ""

    def __enter__(self) -> "chdir_guard":
        self.cwd = chdir(self.path, self.dry_run) or ""
        return self

    def __exit__(self, *_) -> None:
        chdir(self.cwd, self.dry_run)


def format_time(seconds: int) -> str:
    """Format a duration the way the end of build report shows it

    Args:
        seconds (int): Elapsed seconds.

    Returns:
        str: For example "1 HOUR, 2 MINUTES, AND 3 SECONDS" or "5 MINUTES AND 1 SECOND".
    """
    hours, rest = divmod(seconds, 3600)
    mins, secs = divmod(rest, 60)
    text = ""
    if hours == 1:
        text += "1 HOUR, "
    elif hours >= 2:
        text += f"{hours} HOURS, "
    text += "1 MINUTE" if mins == 1 else f"{mins} MINUTES"
    separator = ", AND" if hours else " AND"
    text += f"{separator} 1 SECOND" if secs == 1 else f"{separator} {secs} SECONDS"
    return text


def _check_home(home: str) -> None:
    if not os.path.isdir(home):
        raise config_error(f'The home dir "{home}" does not exist.')


class basic_configure:
    home: str  # root of the build tree

    def __init__(self, home: str = os.getcwd()) -> None:
        self.home = os.path.abspath(home)

    @staticmethod
    def add_argument(parser: argparse.ArgumentParser) -> None:
        """Add --home, --export, --import and --dry-run to the parser

        Args:
            parser (argparse.ArgumentParser): The command line parser.
        """
        parser.add_argument("--home", type=str, help="The root directory to build the toolchain in.", default=os.getcwd())
        parser.add_argument("--export", dest="export_file", type=str, help="Export settings to specific file.")
        parser.add_argument("--import", dest="import_file", type=str, help="Import settings from specific file.")
        parser.add_argument(
            "--dry-run",
            dest="dry_run",
            action=argparse.BooleanOptionalAction,
            help="Preview the commands without actually executing them.",
            default=False,
        )

    @classmethod
    def parse_args(cls, args: argparse.Namespace):
        _check_home(args.home)
        command_dry_run.set(args.dry_run)
        args_list = vars(args)
        param_list: list = []
        for param in itertools.islice(inspect.signature(cls.__init__).parameters.keys(), 1, None):
            assert param in args_list, f"The param {param} is not in args. Every param except self should be able to find in args."
            param_list.append(args_list[param])
        return cls(*param_list)

    def save_config(self, args: argparse.Namespace) -> None:
        """Save the settings to a json file

        Args:
            args (argparse.Namespace): The parsed command line.

        Raises:
            config_error: Writing the file failed.
        """
        export_file: str | None = args.export_file
        if export_file:
            try:
                with open(export_file, "w") as file:
                    json.dump(vars(self), file, indent=4)
                print(f'[crossgcc] Settings have been written to file "{export_file}"')
            except OSError as e:
                raise config_error(f"Export settings failed: {e}")

    def load_config(self, args: argparse.Namespace) -> None:
        """Load settings from a json file and merge them with the command line.
           Options the user gave explicitly win over the file.

        Args:
            args (argparse.Namespace): The parsed command line.

        Raises:
            config_error: Reading or decoding the file failed.
        """
        import_file: str | None = args.import_file
        if import_file:
            try:
                with open(import_file) as file:
                    import_config_list = json.load(file)
            except (OSError, ValueError) as e:
                raise config_error(f'Import file "{import_file}" failed: {e}')
            if not isinstance(import_config_list, dict):
                raise config_error(f'Invalid configure file "{import_file}".')
            current_config_list = vars(self)
            default_config_list = vars(type(self)())
            self.__dict__ = {
                # Keys missing in the file keep their defaults so old files load after the class gains options
                key: (import_config_list.get(key, default_config_list[key]) if value == default_config_list[key] else value)
                for key, value in current_config_list.items()
            }


assert __name__ != "__main__", "Import this file instead of running it directly."
