# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
