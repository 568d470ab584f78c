# SPDX-License-Identifier: Apache-2.0

"""
Shared-custody agreement change workflow.

A guardian proposes a change to a child's active family agreement, the
co-parent approves, declines or counter-proposes it, and once approved both
parents and then the child sign before the change becomes active.
"""

__version__ = "1.0.0"
