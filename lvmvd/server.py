# Copyright Red Hat
#
# lvmvd/server.py - LVM volume driver plugin protocol server
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
HTTP/JSON volume plugin protocol endpoints.

Every endpoint answers with HTTP status 200. Failures are reported in the
``Err`` member of the response body, which is the empty string on success.
"""
from json import dumps, loads, JSONDecodeError
from typing import Dict, Optional
import logging
import os

from flask import Flask, current_app, request
from werkzeug.serving import make_server

from lvmvd import (
    LVMVD_SUBSYSTEM_SERVER,
    DOCKER_GROUP,
    LvmvdError,
    LvmvdRequestError,
    change_group,
)
from lvmvd.driver import VolumeDriver, LifecycleGate

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_server(msg, *args, **kwargs):
    """A wrapper for server subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_SERVER}, **kwargs)


#: Content type of plugin protocol responses
CONTENT_TYPE = "application/vnd.docker.plugins.v1.1+json"

#: Error string for requests without a volume name
ILLEGAL_REQUEST = "Illegal request"

#: Permissions for the plugin socket
SOCKET_MODE = 0o660

# Request members
REQ_NAME = "Name"
REQ_OPTS = "Opts"
REQ_SIZE = "Size"

# Response members
RESP_ERR = "Err"
RESP_MOUNTPOINT = "Mountpoint"
RESP_VOLUME = "Volume"
RESP_VOLUMES = "Volumes"
RESP_IMPLEMENTS = "Implements"
RESP_CAPABILITIES = "Capabilities"


def _write_json(obj):
    body = dumps(obj)
    _log_debug_server("200: %s", body)
    return current_app.response_class(body, status=200, mimetype=CONTENT_TYPE)


def _decode_request() -> Dict:
    """
    Decode the JSON request body. The Content-Type header is not checked:
    the container host does not always send one.
    """
    body = request.get_data(as_text=True)
    _log_debug_server("Request: %s %s, body: %s", request.method, request.path, body)
    try:
        doc = loads(body)
    except JSONDecodeError as err:
        raise LvmvdRequestError(f"Malformed request body: {err}") from err
    if not isinstance(doc, dict):
        raise LvmvdRequestError(ILLEGAL_REQUEST)
    return doc


def _get_name(doc: Dict) -> str:
    name = doc.get(REQ_NAME)
    if not isinstance(name, str):
        raise LvmvdRequestError(ILLEGAL_REQUEST)
    return name


def _get_options(doc: Dict) -> Optional[Dict[str, str]]:
    opts = doc.get(REQ_OPTS)
    if not isinstance(opts, dict):
        return None
    options = {}
    size = opts.get(REQ_SIZE)
    if isinstance(size, (str, int)) and not isinstance(size, bool):
        options["size"] = str(size)
    return options


def _error_response(err: LvmvdError, quiet: bool = False):
    if quiet:
        _log_debug_server("%s", err)
    else:
        _log_error("%s", err)
    return _write_json({RESP_ERR: str(err)})


# pylint: disable=too-many-statements
def create_app(driver: VolumeDriver, gate: Optional[LifecycleGate] = None) -> Flask:
    """
    Create the Flask application serving the volume plugin protocol for
    ``driver``.

    All endpoints except ``/VolumeDriver.Capabilities`` run with ``gate``
    held.

    :param driver: The ``VolumeDriver`` to expose.
    :param gate: The ``LifecycleGate`` serializing requests. A new gate is
                 created if none is given.
    :returns: The configured application.
    :rtype: ``Flask``
    """
    gate = gate or LifecycleGate()
    app = Flask(__name__)
    app.extensions["lvmvd"] = {"driver": driver, "gate": gate}

    @app.post("/Plugin.Activate")
    @gate.serialized
    def plugin_activate():
        _log_debug_server("Request: %s %s", request.method, request.path)
        return _write_json({RESP_IMPLEMENTS: driver.activate()})

    @app.post("/VolumeDriver.Create")
    @gate.serialized
    def volume_driver_create():
        try:
            doc = _decode_request()
            name = _get_name(doc)
            _log_info("/VolumeDriver.Create called for volume %s", name)
            driver.create(name, _get_options(doc))
        except LvmvdError as err:
            return _error_response(err)
        return _write_json({RESP_ERR: ""})

    @app.post("/VolumeDriver.Remove")
    @gate.serialized
    def volume_driver_remove():
        try:
            name = _get_name(_decode_request())
            _log_info("/VolumeDriver.Remove called for volume %s", name)
            driver.remove(name)
        except LvmvdError as err:
            return _error_response(err)
        return _write_json({RESP_ERR: ""})

    @app.post("/VolumeDriver.Mount")
    @gate.serialized
    def volume_driver_mount():
        try:
            name = _get_name(_decode_request())
            _log_info("/VolumeDriver.Mount called for volume %s", name)
            mount_point = driver.mount(name)
        except LvmvdError as err:
            return _error_response(err)
        return _write_json({RESP_MOUNTPOINT: mount_point, RESP_ERR: ""})

    @app.post("/VolumeDriver.Unmount")
    @gate.serialized
    def volume_driver_unmount():
        try:
            name = _get_name(_decode_request())
            _log_info("/VolumeDriver.Unmount called for volume %s", name)
            driver.unmount(name)
        except LvmvdError as err:
            return _error_response(err)
        return _write_json({RESP_ERR: ""})

    @app.post("/VolumeDriver.Path")
    @gate.serialized
    def volume_driver_path():
        try:
            name = _get_name(_decode_request())
            _log_debug_server("/VolumeDriver.Path called for volume %s", name)
            mount_point = driver.path(name)
        except LvmvdError as err:
            return _error_response(err, quiet=True)
        return _write_json({RESP_MOUNTPOINT: mount_point, RESP_ERR: ""})

    @app.post("/VolumeDriver.Get")
    @gate.serialized
    def volume_driver_get():
        try:
            name = _get_name(_decode_request())
            _log_debug_server("/VolumeDriver.Get called for volume %s", name)
            volume = driver.get(name)
        except LvmvdError as err:
            return _error_response(err, quiet=True)
        return _write_json({RESP_VOLUME: volume.to_dict(), RESP_ERR: ""})

    @app.post("/VolumeDriver.List")
    @gate.serialized
    def volume_driver_list():
        _log_debug_server("/VolumeDriver.List called")
        try:
            volumes = driver.list()
        except LvmvdError as err:
            return _error_response(err)
        return _write_json(
            {RESP_VOLUMES: [volume.to_dict() for volume in volumes], RESP_ERR: ""}
        )

    @app.post("/VolumeDriver.Capabilities")
    def volume_driver_capabilities():
        return _write_json({RESP_CAPABILITIES: driver.capabilities()})

    return app


def make_http_server(app: Flask, host: str, port: int):
    """
    Return a threaded WSGI server for ``app`` listening on ``host:port``.
    """
    _log_info("Start listening on %s:%d", host, port)
    return make_server(host, port, app, threaded=True)


def make_unix_server(app: Flask, path: str, group: str = DOCKER_GROUP):
    """
    Return a threaded WSGI server for ``app`` listening on the Unix socket
    ``path``, accessible to members of ``group``.

    A stale socket file at ``path`` is replaced.

    :raises LvmvdSystemError: if the group of the socket cannot be set and
                              ``group`` is not the default group.
    """
    if os.path.lexists(path):
        os.unlink(path)

    mask = os.umask(0o777)
    try:
        server = make_server(f"unix://{path}", 0, app, threaded=True)
    finally:
        os.umask(mask)

    try:
        try:
            change_group(path, group)
        except LvmvdError as err:
            if group != DOCKER_GROUP:
                raise
            _log_warn("Could not change group of %s to %s: %s", path, group, err)
        os.chmod(path, SOCKET_MODE)
    except (LvmvdError, OSError):
        server.server_close()
        raise

    _log_info("Start listening on %s", path)
    return server
