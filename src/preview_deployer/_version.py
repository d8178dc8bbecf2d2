# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
__version__ = "0.1.0"
