# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from .main import run


run()
