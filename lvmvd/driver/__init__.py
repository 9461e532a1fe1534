# Copyright Red Hat
#
# lvmvd/driver/__init__.py - LVM volume driver
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Top level interface to the volume lifecycle engine.
"""

from ._driver import VolumeDriver, DriverConfig  # noqa: F401, F403
from ._oracle import VolumeStateOracle
from ._gate import LifecycleGate

__all__ = [
    "VolumeDriver",
    "DriverConfig",
    "VolumeStateOracle",
    "LifecycleGate",
]
