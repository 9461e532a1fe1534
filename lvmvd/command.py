# Copyright Red Hat
#
# lvmvd/command.py - LVM volume driver command interface
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""The ``lvmvd.command`` module provides the ``lvmvd`` daemon command line
interface: option and configuration file handling, logging setup, startup
checks and the choice of listener for the plugin protocol server.
"""
from argparse import ArgumentParser
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, fields, replace
from os.path import basename, dirname, exists, join, realpath
from json import dumps
import logging
import sys
import os

from lvmvd import (
    LVMVD_DEBUG_DRIVER,
    LVMVD_DEBUG_SERVER,
    LVMVD_DEBUG_COMMAND,
    LVMVD_DEBUG_ALL,
    LVMVD_SUBSYSTEM_COMMAND,
    VOLUME_DRIVER_NAME,
    DEFAULT_VOLUME_SIZE,
    DEFAULT_FILESYSTEM,
    DEFAULT_DEVICE_ROOT,
    DOCKER_GROUP,
    LvmvdError,
    LvmvdSystemError,
    LvmvdArgumentError,
    SubsystemFilter,
    set_debug_mask,
    change_group,
    ensure_directory,
    __version__,
)
from lvmvd.driver import VolumeDriver, DriverConfig, LifecycleGate
from lvmvd.server import create_app, make_http_server, make_unix_server
from lvmvd._signals import register_cleanup_handler

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_command(msg, *args, **kwargs):
    """A wrapper for command subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_COMMAND}, **kwargs)


_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None

#: Base directory for lvmvd configuration
_LVMVD_CFG_DIR = "/etc/lvmvd"

#: Main configuration file path
_LVMVD_CFG_PATH = join(_LVMVD_CFG_DIR, "lvmvd.conf")

#: Main configuration file section
_LVMVD_CFG_GLOBAL = "Global"

#: Directory scanned by the container host for plugin spec files
DEFAULT_JSON_LOCATION = "/etc/docker/plugins"

#: Directory scanned by the container host for plugin sockets
DEFAULT_SOCKET_LOCATION = "/run/docker/plugins"

#: Permissions for plugin socket and spec file directories
_PLUGIN_DIR_MODE = 0o750

#: Permissions for the plugin spec file
_SPEC_FILE_MODE = 0o640

LISTENER_UNIX = "unix"
LISTENER_HTTP = "http"
LISTENERS = [LISTENER_UNIX, LISTENER_HTTP]

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080

#: Map of configuration file keys to ``LvmvdConfig`` attributes
_CFG_KEYS = {
    "VolumeGroup": "volume_group",
    "MountRoot": "mount_root",
    "DefaultSize": "default_size",
    "DeviceRoot": "device_root",
    "Filesystem": "filesystem",
    "Listener": "listener",
    "Host": "host",
    "Port": "port",
    "SocketFile": "socket_file",
    "JsonFile": "json_file",
}

#: ``LvmvdConfig`` attributes holding integer values
_INT_KEYS = ("default_size", "port")


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class LvmvdConfig:
    """
    Daemon configuration.
    """

    volume_group: str = ""
    mount_root: str = ""
    default_size: int = DEFAULT_VOLUME_SIZE
    device_root: str = DEFAULT_DEVICE_ROOT
    filesystem: str = DEFAULT_FILESYSTEM
    listener: str = LISTENER_UNIX
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    socket_file: str = join(DEFAULT_SOCKET_LOCATION, f"{VOLUME_DRIVER_NAME}.sock")
    json_file: str = join(DEFAULT_JSON_LOCATION, f"{VOLUME_DRIVER_NAME}.json")

    @classmethod
    def from_file(cls, config_file: str) -> "LvmvdConfig":
        """
        Load ``LvmvdConfig`` from an INI-style configuration file located at
        ``config_file``.

        :param config_file: path to lvmvd.conf
        :type config_file: ``str``.
        :returns: A ``LvmvdConfig`` instance initialised from ``config_file``.
        :rtype: ``LvmvdConfig``
        """
        if not exists(config_file):
            return LvmvdConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise LvmvdArgumentError(
                f"Failed to parse configuration file {config_file}: {err}"
            ) from err

        values = {}
        if cfg.has_section(_LVMVD_CFG_GLOBAL):
            for key, attr in _CFG_KEYS.items():
                if cfg.has_option(_LVMVD_CFG_GLOBAL, key):
                    values[attr] = cfg[_LVMVD_CFG_GLOBAL][key].strip()

        return LvmvdConfig().override(**values)

    def override(self, **kwargs) -> "LvmvdConfig":
        """
        Return a copy of this ``LvmvdConfig`` with the given attributes
        replaced. Arguments with the value ``None`` are ignored.

        :raises LvmvdArgumentError: if an integer value is invalid.
        """
        names = {f.name for f in fields(self)}
        values = {}
        for attr, value in kwargs.items():
            if value is None or attr not in names:
                continue
            if attr in _INT_KEYS:
                try:
                    value = int(value)
                except ValueError as err:
                    raise LvmvdArgumentError(
                        f"Invalid value for {attr}: '{value}'"
                    ) from err
            values[attr] = value
        return replace(self, **values)

    def driver_config(self) -> DriverConfig:
        """
        Return the ``DriverConfig`` for this daemon configuration.

        :raises LvmvdArgumentError: if required values are missing or the
                                    mount root is the root directory.
        """
        if not self.mount_root:
            raise LvmvdArgumentError(
                "must specify a root directory for mounted filesystems"
            )
        if realpath(self.mount_root) == "/":
            raise LvmvdArgumentError("the root directory cannot be used as mount root")
        if not self.volume_group:
            raise LvmvdArgumentError("must specify a volume group name")
        if self.default_size <= 0:
            raise LvmvdArgumentError(f"Invalid default size: {self.default_size}")
        return DriverConfig(
            volume_group=self.volume_group,
            mount_root=self.mount_root,
            default_size=self.default_size,
            device_root=self.device_root,
            filesystem=self.filesystem,
        )


def write_spec_file(path: str, host: str, port: int):
    """
    Write the plugin spec file advertising the HTTP address of this daemon
    to the container host.

    :param path: The path of the spec file.
    :param host: The host name the daemon listens on.
    :param port: The port number the daemon listens on.
    """
    ensure_directory(dirname(path), _PLUGIN_DIR_MODE, DOCKER_GROUP)
    spec = {"Name": VOLUME_DRIVER_NAME, "Addr": f"http://{host}:{port}"}
    try:
        with open(path, "w", encoding="utf8") as fp:
            fp.write(dumps(spec, indent=4) + "\n")
        os.chmod(path, _SPEC_FILE_MODE)
    except OSError as err:
        raise LvmvdSystemError(f"Failed to write spec file {path}: {err}") from err

    try:
        change_group(path, DOCKER_GROUP)
    except LvmvdError as err:
        _log_warn("Could not set group of %s: %s", path, err)
    _log_debug_command("Wrote spec file %s", path)


def make_driver(config: LvmvdConfig) -> VolumeDriver:
    """
    Create a ``VolumeDriver`` for ``config`` and verify that the volume group
    and mount root are usable.

    :raises LvmvdError: if a startup check fails.
    """
    driver = VolumeDriver(config.driver_config())
    driver.ensure_vg_exists()
    driver.ensure_mountpoint_exists()
    return driver


def serve(config: LvmvdConfig) -> int:
    """
    Run the plugin protocol server for ``config`` until terminated.

    :returns: The exit status for the daemon.
    """
    if config.listener not in LISTENERS:
        raise LvmvdArgumentError(f"unrecognized listener {config.listener}")

    driver = make_driver(config)
    app = create_app(driver, LifecycleGate())

    if config.listener == LISTENER_UNIX:
        ensure_directory(dirname(config.socket_file), _PLUGIN_DIR_MODE, DOCKER_GROUP)
        try:
            server = make_unix_server(app, config.socket_file)
        except OSError as err:
            raise LvmvdSystemError(f"Cannot create socket file: {err}") from err
        runtime_files = [config.socket_file]
    else:
        write_spec_file(config.json_file, config.host, config.port)
        try:
            server = make_http_server(app, config.host, config.port)
        except OSError as err:
            raise LvmvdSystemError(
                f"Cannot listen on {config.host}:{config.port}: {err}"
            ) from err
        runtime_files = [config.json_file]

    register_cleanup_handler(runtime_files)
    try:
        server.serve_forever()
    finally:
        server.server_close()
    return 0


def setup_logging(cmd_args):
    """
    Set up lvmvd logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    lvmvd_log = logging.getLogger("lvmvd")
    formatter = logging.Formatter("%(asctime)s %(levelname)s - %(message)s")
    lvmvd_log.setLevel(level)
    if lvmvd_log.hasHandlers():
        lvmvd_log.handlers.clear()

    # Subsystem log filtering
    _lvmvd_subsystem_filter = SubsystemFilter("lvmvd")

    # Main console handler
    _CONSOLE_HANDLER = logging.StreamHandler(sys.stderr)

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_lvmvd_subsystem_filter)

    lvmvd_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down lvmvd logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "driver": LVMVD_DEBUG_DRIVER,
        "server": LVMVD_DEBUG_SERVER,
        "command": LVMVD_DEBUG_COMMAND,
        "all": LVMVD_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _config_from_args(cmd_args) -> LvmvdConfig:
    config = LvmvdConfig.from_file(cmd_args.config)
    return config.override(
        volume_group=cmd_args.volume_group_name,
        mount_root=cmd_args.mount_root,
        default_size=cmd_args.default_size,
        listener=cmd_args.listener,
        host=cmd_args.host,
        port=cmd_args.port,
        socket_file=cmd_args.sock_file,
        json_file=cmd_args.json_file,
    )


def _serve_args(cmd_args) -> int:
    config = _config_from_args(cmd_args)
    _log_debug_command("Using configuration %s", config)
    return serve(config)


def _add_daemon_args(parser):
    """
    Add daemon configuration arguments to ``parser``. All default to
    ``None`` so that configuration file values apply unless overridden.
    """
    parser.add_argument(
        "--listener",
        choices=LISTENERS,
        help="Listen on a unix socket or http port (default: unix)",
    )
    parser.add_argument(
        "--host",
        metavar="HOST",
        help=f"Host name in case http is specified (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        metavar="PORT",
        type=int,
        help=f"Port number in case http is specified (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--default-size",
        metavar="SIZE",
        type=int,
        help="Default size in megabytes for volumes in case no size is "
        f"specified (default: {DEFAULT_VOLUME_SIZE})",
    )
    parser.add_argument(
        "--mount-root",
        metavar="DIRECTORY",
        help="Root directory for mount points (required)",
    )
    parser.add_argument(
        "--volume-group-name",
        metavar="NAME",
        help="Name of volume group (required)",
    )
    parser.add_argument(
        "--sock-file",
        metavar="PATH",
        help="Path of the plugin socket file",
    )
    parser.add_argument(
        "--json-file",
        metavar="PATH",
        help="Path of the plugin spec file for the http listener",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        default=_LVMVD_CFG_PATH,
        help=f"Path to the configuration file (default: {_LVMVD_CFG_PATH})",
    )


def main(args):
    """
    Main entry point for lvmvd.
    """
    parser = ArgumentParser(
        description="LVM volume driver for Docker", prog=basename(args[0])
    )

    # Global arguments
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of lvmvd",
        version=__version__,
    )
    _add_daemon_args(parser)

    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    if os.geteuid() != 0:
        _log_error("lvmvd must be run as the root user")
        shutdown_logging()
        return status

    _log_debug_command("Parsed %s", " ".join(args[1:]))

    if cmd_args.debug:
        try:
            status = _serve_args(cmd_args)
        except LvmvdError as err:
            _log_error("%s", err)
    else:
        try:
            status = _serve_args(cmd_args)
        # pylint: disable=broad-except
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except LvmvdError as err:
            _log_error("%s", err)
        except Exception as err:
            _log_error("Command failed: %s", err)

    shutdown_logging()
    return status


def console_main():
    """
    Console script entry point.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :
