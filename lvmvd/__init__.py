# Copyright Red Hat
#
# lvmvd/__init__.py - LVM volume driver package initialisation
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Lvmvd top-level package.
"""
from ._lvmvd import *  # noqa: F401, F403
from ._lvmvd import __all__ as _lvmvd_all
from ._callout import *  # noqa: F401, F403
from ._callout import __all__ as _callout_all

__all__ = _lvmvd_all + _callout_all

__version__ = "0.1.0"
