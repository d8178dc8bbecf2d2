# SPDX-License-Identifier: MIT
# SPDX-FileCopyrightText: The preview-deployer contributors
"""Pull request preview environments for a GitOps repository."""
