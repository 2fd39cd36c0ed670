# SPDX-License-Identifier: Apache-2.0
"""Infrastructure adapters for Aegis.

Concrete implementations of the domain's repository and collaborator
contracts: in-memory and SQLite persistence, the repository-backed guard
locator, the sandbox payment gateway and the in-process broadcaster.
"""
